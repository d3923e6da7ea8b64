import argparse

from usagelens.config import Config

COMMANDS = ("summary", "diagnose", "serve")


def parse_args(argv: "list[str] | None" = None) -> "tuple[str, Config]":
    parser = argparse.ArgumentParser(
        prog="usagelens",
        description="Multi-provider LLM usage and cost aggregator",
    )
    parser.add_argument(
        "command",
        choices=COMMANDS,
        nargs="?",
        default="summary",
        help=(
            "summary: print the combined usage summary as JSON; "
            "diagnose: check every stored key; "
            "serve: refresh periodically and export Prometheus metrics "
            "(default: summary)"
        ),
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":9186",
        help="Metrics address for the serve command (default: :9186)",
    )
    parser.add_argument(
        "--refresh.interval",
        dest="refresh_interval",
        type=int,
        default=300,
        help="Refresh interval in seconds for the serve command (default: 300)",
    )
    parser.add_argument(
        "--lookback.days",
        dest="lookback_days",
        type=int,
        default=30,
        help="Number of days to aggregate, including today (default: 30)",
    )
    parser.add_argument(
        "--http.timeout",
        dest="http_timeout",
        type=float,
        default=10.0,
        help="Timeout in seconds for each provider request (default: 10)",
    )
    parser.add_argument(
        "--pagination.max-pages",
        dest="max_pages",
        type=int,
        default=10,
        help="Maximum pages followed per endpoint (default: 10)",
    )
    parser.add_argument(
        "--secrets.file",
        dest="secrets_file",
        default=None,
        help="JSON secrets file (default: $USAGELENS_SECRETS_FILE)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.listen_address = args.listen_address
    config.refresh_interval = args.refresh_interval
    config.lookback_days = args.lookback_days
    config.http_timeout = args.http_timeout
    config.max_pages = args.max_pages
    config.log_level = args.log_level
    if args.secrets_file is not None:
        config.secrets_file = args.secrets_file
    return args.command, config

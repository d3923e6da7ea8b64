import asyncio
import json
import signal
import sys

import structlog
from prometheus_client import start_http_server

from usagelens.audit import LoggingAuditSink
from usagelens.cli import parse_args
from usagelens.config import Config
from usagelens.diagnosis import diagnosis_overview
from usagelens.errors import UsageLensError
from usagelens.logging import setup_logging
from usagelens.metrics import MetricsUpdater
from usagelens.refresher import Refresher
from usagelens.service import UsageService

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9186' or '0.0.0.0:9186'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def _build_service(config: "Config", metrics: "MetricsUpdater | None" = None) -> "UsageService":
    return UsageService(
        store=config.build_secret_store(),
        audit_sink=LoggingAuditSink(),
        metrics=metrics,
        timeout=config.http_timeout,
        max_pages=config.max_pages,
        lookback_days=config.lookback_days,
    )


async def _summary(config: "Config") -> "None":
    async with _build_service(config) as service:
        summary = await service.refresh()
    json.dump(summary.as_dict(), sys.stdout, indent=2)
    sys.stdout.write("\n")


async def _diagnose(config: "Config") -> "None":
    async with _build_service(config) as service:
        diagnoses = await service.diagnose_all_providers()
    report = {tag: diagnosis_overview(items) for tag, items in diagnoses.items()}
    json.dump(report, sys.stdout, indent=2)
    sys.stdout.write("\n")


async def _serve(config: "Config") -> "None":
    metrics_updater = MetricsUpdater()
    host, port = _parse_listen_address(config.listen_address)
    start_http_server(port, addr=host)
    logger.info("metrics_server_started", host=host, port=port)

    service = _build_service(config, metrics_updater)
    refresher = Refresher(service, config.refresh_interval)

    loop = asyncio.get_running_loop()
    # for SIGINT and SIGTERM, signal the refresher
    # to stop gracefully
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, refresher.stop)

    try:
        await refresher.run()
    finally:
        logger.info("shutting_down")
        await service.close()
        logger.info("shutdown_complete")


def main(argv: "list[str] | None" = None) -> "None":
    command, config = parse_args(argv)
    setup_logging(config.log_level)

    try:
        config.validate()
        if command == "diagnose":
            asyncio.run(_diagnose(config))
        elif command == "serve":
            asyncio.run(_serve(config))
        else:
            asyncio.run(_summary(config))
    except UsageLensError as exc:
        logger.error("usagelens_failed", error=str(exc))
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()

from typing import Any

from usagelens import audit
from usagelens.audit import LoggingAuditSink, NullAuditSink, safe_record


class RaisingSink:
    def record(
        self,
        action: "str",
        resource_type: "str | None" = None,
        resource_id: "str | None" = None,
        details: "dict[str, Any] | None" = None,
    ) -> "None":
        raise RuntimeError("audit backend down")


class TestAuditSinks:
    def test_null_sink_accepts_events(self) -> "None":
        assert NullAuditSink().record(audit.API_CALL, "openai", "usage", {}) is None

    def test_logging_sink_accepts_events(self) -> "None":
        sink = LoggingAuditSink()
        sink.record(audit.API_ERROR, "anthropic", "usage", {"credential": "prod"})

    def test_safe_record_swallows_sink_failures(self) -> "None":
        safe_record(RaisingSink(), audit.API_CALL, "openai", "usage", {"credential": "prod"})

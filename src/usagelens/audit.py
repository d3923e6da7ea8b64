from typing import Any, Protocol

import structlog

logger = structlog.get_logger()

# action names shared with the audit log viewer
API_CALL = "api_call"
API_ERROR = "api_error"
SECRET_ACCESSED = "secret_accessed"


class AuditSink(Protocol):
    """
    AuditSink receives fire-and-forget audit events. Implementations
    must not raise; callers never wait on or inspect the outcome.
    """

    def record(
        self,
        action: "str",
        resource_type: "str | None" = None,
        resource_id: "str | None" = None,
        details: "dict[str, Any] | None" = None,
    ) -> "None": ...


class NullAuditSink:
    def record(
        self,
        action: "str",
        resource_type: "str | None" = None,
        resource_id: "str | None" = None,
        details: "dict[str, Any] | None" = None,
    ) -> "None":
        return None


class LoggingAuditSink:
    """
    LoggingAuditSink writes audit events to the structured log.
    """

    def __init__(self, logger_name: "str" = "usagelens.audit") -> "None":
        self._logger = structlog.get_logger(logger_name)

    def record(
        self,
        action: "str",
        resource_type: "str | None" = None,
        resource_id: "str | None" = None,
        details: "dict[str, Any] | None" = None,
    ) -> "None":
        try:
            self._logger.info(
                "audit_event",
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                details=details or {},
            )
        except Exception:
            # audit failures must never reach the caller
            logger.warning("audit_record_failed", action=action)


def safe_record(
    sink: "AuditSink",
    action: "str",
    resource_type: "str | None" = None,
    resource_id: "str | None" = None,
    details: "dict[str, Any] | None" = None,
) -> "None":
    """
    records an audit event, swallowing failures of sinks that do
    not honour the no-raise contract.
    """
    try:
        sink.record(action, resource_type, resource_id, details)
    except Exception:
        logger.warning("audit_record_failed", action=action)

import asyncio
from typing import Any, Mapping, Sequence

import structlog

from usagelens import audit
from usagelens.audit import AuditSink, NullAuditSink, safe_record
from usagelens.credentials import CredentialResolver
from usagelens.errors import SecretStoreError
from usagelens.models import KEY_KIND_UNKNOWN, KeyDiagnosis
from usagelens.provider.base import UsageClient

logger = structlog.get_logger()


class DiagnosisOrchestrator:
    """
    runs the key diagnosis of every resolved credential of every
    provider. Providers are diagnosed concurrently, the keys of one
    provider one after another. Never raises: failures end up in the
    error_message of the affected entry.
    """

    def __init__(
        self,
        resolver: "CredentialResolver",
        clients: "Mapping[str, UsageClient]",
        audit_sink: "AuditSink | None" = None,
    ) -> "None":
        self._resolver = resolver
        self._clients = dict(clients)
        self._audit: "AuditSink" = audit_sink or NullAuditSink()

    async def diagnose_all_providers(self) -> "dict[str, list[KeyDiagnosis]]":
        tags = list(self._clients)
        results = await asyncio.gather(
            *(self._diagnose_provider(tag) for tag in tags),
            return_exceptions=True,
        )

        diagnoses: "dict[str, list[KeyDiagnosis]]" = {}
        for tag, result in zip(tags, results):
            if isinstance(result, BaseException):
                logger.error("provider_diagnosis_error", provider=tag, exc_info=result)
                diagnoses[tag] = []
                continue
            diagnoses[tag] = result
        return diagnoses

    async def _diagnose_provider(self, tag: "str") -> "list[KeyDiagnosis]":
        client = self._clients[tag]
        try:
            credentials = self._resolver.resolve_credentials(tag)
        except SecretStoreError as exc:
            logger.error("credential_lookup_failed", provider=tag, error=str(exc))
            safe_record(self._audit, audit.API_ERROR, tag, "diagnosis", {"error": str(exc)})
            return []

        if credentials:
            safe_record(
                self._audit,
                audit.SECRET_ACCESSED,
                tag,
                "diagnosis",
                {"credentials": [c.name for c in credentials]},
            )

        diagnoses: "list[KeyDiagnosis]" = []
        for credential in credentials:
            try:
                diagnosis = await client.diagnose(credential)
            except Exception as exc:
                logger.exception(
                    "key_diagnosis_error",
                    provider=tag,
                    credential=credential.name,
                )
                diagnosis = KeyDiagnosis(
                    credential_name=credential.name,
                    is_valid=False,
                    key_kind=KEY_KIND_UNKNOWN,
                    error_message=f"error: {exc}",
                )

            logger.info(
                "key_diagnosed",
                provider=tag,
                credential=credential.name,
                valid=diagnosis.is_valid,
                key_kind=diagnosis.key_kind,
                accessible=len(diagnosis.accessible),
            )
            diagnoses.append(diagnosis)
        return diagnoses


def diagnosis_overview(diagnoses: "Sequence[KeyDiagnosis]") -> "dict[str, Any]":
    """
    counts keys, valid keys and accessible units of one provider.
    """
    return {
        "total_keys": len(diagnoses),
        "valid_keys": sum(1 for d in diagnoses if d.is_valid),
        "accessible": sum(len(d.accessible) for d in diagnoses),
        "keys": [d.as_dict() for d in diagnoses],
    }

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

import structlog

from usagelens.errors import ConfigError, SecretStoreError
from usagelens.models import (
    PROVIDER_ANTHROPIC,
    PROVIDER_GOOGLE,
    PROVIDER_OPENAI,
    Credential,
)

logger = structlog.get_logger()

LLM_CATEGORY = "llm"


@dataclass(frozen=True, slots=True)
class SecretEntry:
    name: "str"
    value: "str"
    category: "str" = ""


class SecretStore(Protocol):
    """
    SecretStore is the read side of the local credential store.
    Implementations raise SecretStoreError when the store itself
    is unreachable and return an empty sequence for unknown tags.
    """

    def list_credentials_by_provider(self, tag: "str") -> "Sequence[SecretEntry]": ...


class StaticSecretStore:
    """
    StaticSecretStore keeps secrets in memory, keyed by provider
    tag (case-insensitive).
    """

    def __init__(
        self,
        entries: "dict[str, Sequence[SecretEntry]] | None" = None,
    ) -> "None":
        self._entries: "dict[str, list[SecretEntry]]" = {}
        for tag, secrets in (entries or {}).items():
            for secret in secrets:
                self.add(tag, secret)

    def add(self, tag: "str", entry: "SecretEntry") -> "None":
        self._entries.setdefault(tag.lower(), []).append(entry)

    def list_credentials_by_provider(self, tag: "str") -> "list[SecretEntry]":
        return list(self._entries.get(tag.lower(), []))

    @classmethod
    def from_file(cls, path: "str | Path") -> "StaticSecretStore":
        """
        loads a JSON list of {"name", "value", "category", "provider"}
        objects.
        """
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except OSError as exc:
            raise SecretStoreError(f"cannot read secrets file {path}: {exc}") from exc
        except ValueError as exc:
            raise ConfigError(f"secrets file {path} is not valid JSON") from exc

        if not isinstance(raw, list):
            raise ConfigError(f"secrets file {path} must contain a JSON list")

        store = cls()
        for i, item in enumerate(raw):
            if not isinstance(item, dict) or not item.get("value"):
                raise ConfigError(f"secrets file entry {i} has no value")
            provider = str(item.get("provider") or "")
            if not provider:
                raise ConfigError(f"secrets file entry {i} has no provider")

            store.add(
                provider,
                SecretEntry(
                    name=str(item.get("name") or f"{provider}-{i}"),
                    value=str(item["value"]),
                    category=str(item.get("category") or ""),
                ),
            )
        return store


@dataclass(frozen=True, slots=True)
class ProviderKeyRules:
    """
    ProviderKeyRules declares which hints mark a secret as a usable
    key for one provider.
    """

    key_prefix: "str"
    # whether a name containing "admin" counts as a hint
    match_admin_name: "bool" = True


PROVIDER_KEY_RULES: "dict[str, ProviderKeyRules]" = {
    PROVIDER_OPENAI: ProviderKeyRules(key_prefix="sk-admin-"),
    PROVIDER_ANTHROPIC: ProviderKeyRules(key_prefix="sk-ant-admin-"),
    # Google keys have no admin/standard split
    PROVIDER_GOOGLE: ProviderKeyRules(key_prefix="AIza", match_admin_name=False),
}


class CredentialResolver:
    """
    CredentialResolver selects the candidate credentials for a
    provider. The selection is deliberately permissive: a secret
    is kept if it is in the LLM category, if its name mentions
    "admin", or if its value carries the provider's key prefix.
    Keys that turn out to be unusable fail validation downstream.
    """

    def __init__(
        self,
        store: "SecretStore",
        rules: "dict[str, ProviderKeyRules] | None" = None,
    ) -> "None":
        self._store = store
        self._rules = rules if rules is not None else PROVIDER_KEY_RULES

    def resolve_credentials(self, provider_tag: "str") -> "list[Credential]":
        """
        returns the matching credentials in store order. Raises
        SecretStoreError only when the store cannot be read.
        """
        try:
            entries = self._store.list_credentials_by_provider(provider_tag)
        except SecretStoreError:
            raise
        except Exception as exc:
            raise SecretStoreError(
                f"secret store lookup failed for {provider_tag}: {exc}"
            ) from exc

        rules = self._rules.get(provider_tag.lower())
        credentials = [
            Credential(name=entry.name, value=entry.value, provider_hint=provider_tag)
            for entry in entries or ()
            if self._matches(entry, rules)
        ]

        logger.debug(
            "credentials_resolved",
            provider=provider_tag,
            candidates=len(entries or ()),
            selected=[c.name for c in credentials],
        )
        return credentials

    @staticmethod
    def _matches(entry: "SecretEntry", rules: "ProviderKeyRules | None") -> "bool":
        if (entry.category or "").lower() == LLM_CATEGORY:
            return True

        if rules is None:
            # unknown provider: fall back to the generic admin-name hint
            return "admin" in entry.name.lower()

        if rules.match_admin_name and "admin" in entry.name.lower():
            return True

        return bool(rules.key_prefix) and entry.value.startswith(rules.key_prefix)

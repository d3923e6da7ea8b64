import os
from dataclasses import dataclass

from usagelens.credentials import LLM_CATEGORY, SecretEntry, StaticSecretStore
from usagelens.errors import ConfigError
from usagelens.models import PROVIDER_ANTHROPIC, PROVIDER_GOOGLE, PROVIDER_OPENAI

# environment variable -> (provider tag, credential name)
_ENV_SECRETS: "dict[str, tuple[str, str]]" = {
    "OPENAI_ADMIN_KEY": (PROVIDER_OPENAI, "OPENAI_ADMIN_KEY"),
    "ANTHROPIC_ADMIN_KEY": (PROVIDER_ANTHROPIC, "ANTHROPIC_ADMIN_KEY"),
    "GEMINI_API_KEY": (PROVIDER_GOOGLE, "GEMINI_API_KEY"),
}


@dataclass
class Config:
    # metrics address for serve, format ":9186" or "0.0.0.0:9186"
    listen_address: "str" = ":9186"
    # background refresh interval in seconds
    refresh_interval: "int" = 300
    log_level: "str" = "info"
    lookback_days: "int" = 30
    http_timeout: "float" = 10.0
    max_pages: "int" = 10
    # optional JSON secrets file, see StaticSecretStore.from_file
    secrets_file: "str" = ""

    openai_admin_key: "str" = ""
    anthropic_admin_key: "str" = ""
    gemini_api_key: "str" = ""

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            secrets_file=os.environ.get("USAGELENS_SECRETS_FILE", ""),
            openai_admin_key=os.environ.get("OPENAI_ADMIN_KEY", ""),
            anthropic_admin_key=os.environ.get("ANTHROPIC_ADMIN_KEY", ""),
            gemini_api_key=os.environ.get("GEMINI_API_KEY", ""),
        )

    def validate(self) -> "None":
        if self.lookback_days < 1:
            raise ConfigError("lookback days must be at least 1")
        if self.max_pages < 1:
            raise ConfigError("max pages must be at least 1")
        if self.http_timeout <= 0:
            raise ConfigError("HTTP timeout must be positive")
        if self.refresh_interval < 1:
            raise ConfigError("refresh interval must be at least 1 second")

    def build_secret_store(self) -> "StaticSecretStore":
        """
        builds the secret store from the secrets file, if any, plus
        the keys given through the environment. Environment keys are
        tagged with the LLM category so the resolver always picks
        them up.
        """
        store = (
            StaticSecretStore.from_file(self.secrets_file)
            if self.secrets_file
            else StaticSecretStore()
        )

        values = {
            "OPENAI_ADMIN_KEY": self.openai_admin_key,
            "ANTHROPIC_ADMIN_KEY": self.anthropic_admin_key,
            "GEMINI_API_KEY": self.gemini_api_key,
        }
        for env_name, value in values.items():
            if not value:
                continue
            tag, name = _ENV_SECRETS[env_name]
            store.add(tag, SecretEntry(name=name, value=value, category=LLM_CATEGORY))
        return store

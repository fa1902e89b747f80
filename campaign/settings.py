"""
Typed configuration for the dispatchers and the purchase workflow.

Two sources feed it:
- Environment-level secrets (process env or a .env file), read with
  pydantic-settings
- The key/value settings table, edited by administrators

The settings table historically stored the same key in upper and lower case.
Keys are folded to one canonical lower-case name here, so the rest of the
code only sees `CampaignSettings` fields. Environment secrets win over table
values.
"""

from typing import Mapping, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Legacy table keys that mean the same thing as a canonical field
LEGACY_ALIASES = {
    "whatsapp_phone_id": "whatsapp_phone_number_id",
    "resend_from": "email_from",
    "smtp_from": "email_from",
    "lovable_api_key": "ai_gateway_api_key",
}

FALSE_VALUES = {"false", "0", "no", "off"}


class EnvSecrets(BaseSettings):
    """Secrets and process options read from the environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    resend_api_key: Optional[str] = None
    email_from: Optional[str] = None
    whatsapp_token: Optional[str] = None
    whatsapp_phone_number_id: Optional[str] = None
    whatsapp_country_code: Optional[str] = None
    ai_gateway_api_key: Optional[str] = None
    ai_gateway_url: Optional[str] = None
    ai_model: Optional[str] = None
    http_timeout_seconds: Optional[float] = None

    signed_url_secret: str = "change-me"
    storage_base_url: str = "http://localhost:8000/storage/purchase-documents"
    data_dir: Optional[str] = None


class CampaignSettings(BaseModel):
    """
    Settings for one invocation, one canonical key per setting.

    A disabled channel is a plain boolean: dispatchers turn it into a SKIPPED
    log entry, never into an error.
    """
    email_enabled: bool = Field(default=True)
    whatsapp_enabled: bool = Field(default=True)

    resend_api_key: Optional[str] = Field(default=None)
    email_from: Optional[str] = Field(default=None)

    whatsapp_token: Optional[str] = Field(default=None)
    whatsapp_phone_number_id: Optional[str] = Field(default=None)
    whatsapp_api_version: str = Field(default="v18.0")
    whatsapp_country_code: str = Field(default="591")
    whatsapp_template_language: str = Field(default="es")

    ai_gateway_api_key: Optional[str] = Field(default=None)
    ai_gateway_url: str = Field(default="https://ai.gateway.lovable.dev/v1/chat/completions")
    ai_model: str = Field(default="google/gemini-2.5-flash")

    http_timeout_seconds: float = Field(default=20.0, gt=0)

    @property
    def email_configured(self) -> bool:
        return bool(self.resend_api_key and self.email_from)

    @property
    def whatsapp_configured(self) -> bool:
        return bool(self.whatsapp_token and self.whatsapp_phone_number_id)


def fold_setting_keys(rows: Mapping[str, str]) -> dict[str, str]:
    """
    Collapse dual-case legacy keys into canonical lower-case keys.

    When both variants exist the upper-case one wins, as it always did.
    """
    folded: dict[str, str] = {}
    from_upper: set[str] = set()

    for key, value in rows.items():
        canonical = key.strip().lower()
        canonical = LEGACY_ALIASES.get(canonical, canonical)
        is_upper = key.isupper()

        if canonical in from_upper and not is_upper:
            continue
        folded[canonical] = value
        if is_upper:
            from_upper.add(canonical)

    return folded


def _parse_bool(value: Optional[str], default: bool = True) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() not in FALSE_VALUES


def load_settings(rows: Mapping[str, str], env: Optional[EnvSecrets] = None) -> CampaignSettings:
    """
    Build the typed settings for one invocation.

    Args:
        rows: The settings table as a flat key/value mapping
        env: Environment secrets (defaults to the process environment)
    """
    env = env or get_env_secrets()
    folded = fold_setting_keys(rows)

    values: dict = {}
    for name in CampaignSettings.model_fields:
        if name in ("email_enabled", "whatsapp_enabled"):
            values[name] = _parse_bool(folded.get(name))
        elif folded.get(name):
            values[name] = folded[name]

    # Environment-level secrets override the table
    for name, value in env.model_dump().items():
        if name in CampaignSettings.model_fields and value is not None:
            values[name] = value

    return CampaignSettings(**values)


_env_secrets: Optional[EnvSecrets] = None


def get_env_secrets() -> EnvSecrets:
    """Process-wide environment secrets, read once."""
    global _env_secrets
    if _env_secrets is None:
        _env_secrets = EnvSecrets()
    return _env_secrets


def reset_env_secrets(env: Optional[EnvSecrets] = None) -> None:
    """Replace the cached environment secrets (for testing)."""
    global _env_secrets
    _env_secrets = env

from functools import lru_cache
import json

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_list_value(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except ValueError:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="forbid",
        validate_by_name=True,
        populate_by_name=True,
    )
    database_url: str = "sqlite:///./finbot.db"

    docs_enabled: bool = True
    openapi_enabled: bool = True
    expose_error_details: bool = False

    jwt_secret: str = Field(
        default="",
        validation_alias=AliasChoices("JWT_SECRET", "FINBOT_JWT_SECRET"),
    )
    jwt_audience: str = ""
    accounting_identity_jwks_url: str = "https://identity.xero.com/.well-known/openid-configuration/jwks"
    accounting_token_issuers_raw: str = Field(
        default="https://identity.xero.com",
        validation_alias=AliasChoices("ACCOUNTING_TOKEN_ISSUERS"),
    )

    # --- AI providers ---
    ai_provider: str = "mock"
    ai_model: str = ""
    ai_intent_provider: str = ""
    ai_intent_model: str = ""
    ai_document_provider: str = ""
    ai_document_model: str = ""
    ai_allowed_providers_raw: str = Field(
        default="mock,gemini,openai",
        validation_alias=AliasChoices("AI_ALLOWED_PROVIDERS"),
    )
    gemini_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    )
    openai_api_key: str = ""
    # Any OpenAI-compatible chat-completions endpoint.
    openai_base_url: str = "https://api.openai.com/v1"
    ai_temperature: float = 0.1
    ai_max_tokens: int = 2000
    ai_timeout_seconds: float = 30.0
    ai_intent_timeout_seconds: float = 15.0
    ai_document_max_chars: int = 20000
    ai_debug_store_raw: bool = False

    # <= 0 keeps the channel down until restart once it has been marked unavailable.
    ai_unavailable_cooldown_seconds: float = 300.0
    ai_unavailable_signatures_raw: str = Field(
        default="GoogleGenerativeAI Error,404 Not Found,UNAVAILABLE,Service Unavailable,model not found",
        validation_alias=AliasChoices("AI_UNAVAILABLE_SIGNATURES"),
    )

    # --- Conversation memory ---
    memory_max_turns: int = 20
    memory_context_turns: int = 5
    memory_idle_ttl_seconds: int = 0

    # --- External accounting system ---
    accounting_api_base_url: str = "https://api.xero.com/api.xro/2.0"
    accounting_connections_url: str = "https://api.xero.com/connections"
    accounting_tenant_id: str = Field(
        default="",
        validation_alias=AliasChoices("ACCOUNTING_TENANT_ID", "XERO_TENANT_ID"),
    )
    accounting_timeout_seconds: float = 30.0
    accounting_sync_enabled: bool = True
    accounting_placeholder_contact_id: str = "b9794c5e-36be-4502-bb11-9f8cd2541c0a"
    accounting_branding_theme_id: str = "34efa745-7238-4ead-b95e-1fe6c816adbe"
    accounting_invoice_url: str = "https://example.com/invoice"
    accounting_account_code: str = "200"
    default_currency: str = "USD"

    upload_max_bytes: int = 10 * 1024 * 1024

    cors_allow_origins_raw: str = Field(
        default="",
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "FRONTEND_URL"),
    )

    @field_validator("default_currency")
    @classmethod
    def _currency_code(cls, value: str) -> str:
        code = (value or "").strip().upper()
        if len(code) != 3:
            msg = f"default_currency must be a 3-letter code, got {value!r}"
            raise ValueError(msg)
        return code

    @property
    def cors_allow_origins(self) -> list[str]:
        return _parse_list_value(self.cors_allow_origins_raw)

    @property
    def ai_unavailable_signatures(self) -> list[str]:
        return _parse_list_value(self.ai_unavailable_signatures_raw)

    @property
    def ai_allowed_providers(self) -> list[str]:
        providers = [p.lower() for p in _parse_list_value(self.ai_allowed_providers_raw)]
        if "mock" not in providers:
            providers.append("mock")
        return providers

    @property
    def accounting_token_issuers(self) -> list[str]:
        return _parse_list_value(self.accounting_token_issuers_raw)


@lru_cache
def get_settings() -> Settings:
    return Settings()

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_REFERRAL_ATTRIBUTE_KEY = "square:a3dde506-f69e-48e4-a98a-004c1822d3ad"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./salonref.db"

    # Application URLs
    api_base_url: str = "http://localhost:8000"
    referral_base_url: str = "http://localhost:3000"

    # Square platform
    square_access_token: str = ""
    square_environment: Literal["sandbox", "production"] = "sandbox"
    square_api_version: str = "2024-10-17"
    square_location_id: str = ""
    square_organization_id: str = "default"
    square_webhook_signature_key: str = ""
    square_webhook_notification_url: str | None = None
    square_referral_code_attribute_key: str = DEFAULT_REFERRAL_ATTRIBUTE_KEY
    square_timeout_seconds: float = 15.0

    # Referral rewards
    signup_bonus_amount_cents: int = 1000
    referrer_reward_amount_cents: int = 1000
    reward_currency: str = "USD"
    personal_code_length: int = Field(default=8, ge=4, le=16)

    # Admin analytics
    analytics_admin_key: str = ""

    # Email (SendGrid)
    sendgrid_api_key: str | None = None
    sendgrid_sender_email: str | None = None
    admin_notification_emails: Annotated[list[str], NoDecode] = Field(default_factory=list)
    disable_email_sending: bool = False

    @field_validator("admin_notification_emails", mode="before")
    @classmethod
    def _parse_email_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    # SMS (Twilio)
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_from_number: str | None = None
    disable_sms_sending: bool = False

    # Apple Wallet
    apple_pass_type_id: str = ""
    apple_team_id: str = ""
    apple_pass_certificate_pem_base64: str | None = None
    apple_pass_key_pem_base64: str | None = None
    apple_pass_certificate_p12_base64: str | None = None
    apple_pass_certificate_password: str | None = None
    apple_wwdr_certificate_base64: str | None = None
    apple_pass_auth_secret: str = ""
    apple_pass_assets_dir: str | None = None
    apple_pass_organization_name: str = "Zorina Nail Studio"
    apple_pass_description: str = "Gift Card"
    apns_use_sandbox: bool = False
    disable_wallet_push: bool = False

    # Referral click tracking
    click_ip_hash_salt: str = "change-me"

    @property
    def square_base_url(self) -> str:
        if self.square_environment == "production":
            return "https://connect.squareup.com"
        return "https://connect.squareupsandbox.com"

    @property
    def wallet_web_service_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/api/wallet"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

from enum import Enum
from typing import Literal, Optional

from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: Literal["development", "staging", "production", "test"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    custody_base_url: AnyHttpUrl = "http://mock-custody:8001"
    custody_api_key: Optional[str] = None
    custody_entity_secret_ciphertext: Optional[str] = None
    wallet_set_id: Optional[str] = None
    wallet_set_name: str = "Healthcare Billing Wallets"
    system_wallet_id: Optional[str] = None
    webhook_secret: Optional[str] = None

    registry_base_url: AnyHttpUrl = "http://mock-registry:8002"
    bearer_token: Optional[str] = None
    db_url: str = "sqlite:///./wallet_hub.db"
    request_timeout_seconds: float = 10.0

    # One network, account type and token for the whole deployment.
    blockchain: str = "MATIC-AMOY"
    account_type: str = "SCA"
    currency: str = "USDC"
    token_id: str = "0x07865c6e87b9f70255377e024ace6630c1eaa37f"
    fee_level: str = "MEDIUM"

    funding_pending_on_failure: bool = True
    balance_empty_on_failure: bool = True

    @property
    def custody_configured(self) -> bool:
        return bool(self.custody_api_key and self.custody_entity_secret_ciphertext)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()


def get_settings() -> Settings:
    return settings


class EntityType(str, Enum):
    PROVIDER = "provider"
    INSURER = "insurer"
    PATIENT = "patient"
    SYSTEM = "system"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class TransferStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


SYSTEM_WALLET_MARKERS = ("system", "funding")

provider_transfer_status_map = {
    "COMPLETE": TransferStatus.COMPLETED,
    "CONFIRMED": TransferStatus.COMPLETED,
    "FAILED": TransferStatus.FAILED,
    "CANCELLED": TransferStatus.FAILED,
    "DENIED": TransferStatus.FAILED,
}

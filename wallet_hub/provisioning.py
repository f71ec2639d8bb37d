"""
Wallet set and wallet creation against the custody provider.

Every mutating call carries a freshly generated idempotency key. A call that
timed out has an unknown outcome; re-issuing it goes through the same code
path and therefore gets a new key, so a retry risks at most a duplicate
wallet rather than being rejected as a replay of an aborted request.
"""

from typing import Optional

from sqlalchemy.orm import Session

from wallet_hub.clients.custody_client import CustodyClient
from wallet_hub.config import EntityType, Settings
from wallet_hub.contracts.contracts import CreateWalletSetRequest, CreateWalletsRequest
from wallet_hub.directory import AccountDirectory
from wallet_hub.exceptions import MalformedResponse, PreconditionFailed, ProviderError
from wallet_hub.helpers import new_idempotency_key
from wallet_hub.logging_config import get_logger
from wallet_hub.models import WalletAccount
from wallet_hub.normalizer import NormalizedWallet, normalize_wallet, normalize_wallet_set_id
from wallet_hub.wallet_set import WalletSetRegistry

logger = get_logger(__name__)


class WalletProvisioning:
    def __init__(self, client: CustodyClient, settings: Settings, wallet_sets: WalletSetRegistry):
        self.client = client
        self.settings = settings
        self.wallet_sets = wallet_sets

    async def create_wallet_set(
        self,
        name: str,
        description: str | None = None,
        timeout: Optional[float] = None,
    ) -> str:
        self.client.ensure_configured()
        idempotency_key = new_idempotency_key()
        request = CreateWalletSetRequest(
            idempotencyKey=idempotency_key,
            entitySecretCiphertext=self.settings.custody_entity_secret_ciphertext,
            name=name or self.settings.wallet_set_name,
        )
        logger.info("Creating wallet set name=%s description=%s idempotency_key=%s", request.name, description, idempotency_key)
        payload = await self.client.create_wallet_set(request, timeout=timeout)
        try:
            wallet_set_id = normalize_wallet_set_id(payload)
        except MalformedResponse as exc:
            raise ProviderError("invalid wallet set response: no id found", raw_details=payload) from exc
        logger.info("Wallet set created wallet_set_id=%s", wallet_set_id)
        return wallet_set_id

    async def create_wallet(
        self,
        wallet_set_id: str,
        entity_type: EntityType | str,
        entity_id: str,
        description: str | None = None,
        timeout: Optional[float] = None,
    ) -> NormalizedWallet:
        if not wallet_set_id:
            raise PreconditionFailed("wallet_set_id is required; create a wallet set first")
        self.client.ensure_configured()
        entity_type = EntityType(entity_type)
        idempotency_key = new_idempotency_key()
        request = CreateWalletsRequest.for_entity(
            self.settings,
            idempotency_key,
            wallet_set_id,
            entity_type.value,
            entity_id,
            description or f"{entity_type.value} wallet for {entity_id}",
        )
        logger.info(
            "Creating wallet entity=%s:%s wallet_set_id=%s idempotency_key=%s",
            entity_type.value,
            entity_id,
            wallet_set_id,
            idempotency_key,
        )
        payload = await self.client.create_wallets(request, timeout=timeout)
        try:
            wallet = normalize_wallet(payload)
        except MalformedResponse as exc:
            raise ProviderError("no wallet created in provider response", raw_details=payload) from exc
        logger.info("Wallet created wallet_id=%s entity=%s:%s", wallet.id, entity_type.value, entity_id)
        return wallet

    async def ensure_wallet_set(self, timeout: Optional[float] = None) -> str:
        current = self.wallet_sets.get()
        if current:
            return current
        candidate = await self.create_wallet_set(
            self.settings.wallet_set_name,
            "Wallet set for provider, insurer and patient accounts",
            timeout=timeout,
        )
        return self.wallet_sets.claim(candidate)

    async def provision_entity_wallet(
        self,
        db: Session,
        entity_type: EntityType | str,
        entity_id: str,
        description: str | None = None,
        timeout: Optional[float] = None,
    ) -> WalletAccount:
        """Return the entity's active account, creating wallet and account on first use."""
        directory = AccountDirectory(db)
        existing = directory.lookup(entity_type, entity_id)
        if existing is not None:
            return existing
        wallet_set_id = await self.ensure_wallet_set(timeout=timeout)
        wallet = await self.create_wallet(wallet_set_id, entity_type, entity_id, description, timeout=timeout)
        return directory.create(
            entity_type,
            entity_id,
            wallet.id,
            wallet_set_id=wallet_set_id,
            address=wallet.address,
            blockchain=wallet.blockchain or self.settings.blockchain,
        )

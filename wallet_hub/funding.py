"""
Value movement between custody wallets.

``fund`` tops a wallet up from the system funding wallet. When the provider
rejects the transfer the record is left ``pending`` instead of ``failed``:
sandbox funding wallets are usually not pre-funded, and an operator funds
the source out of band and then calls ``retry_pending``. The policy is the
``funding_pending_on_failure`` setting. Claim payments through ``transfer``
never degrade; a rejected payment is recorded as ``failed`` and raised.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from wallet_hub.clients.custody_client import CustodyClient
from wallet_hub.config import SYSTEM_WALLET_MARKERS, EntityType, Settings, TransferStatus
from wallet_hub.contracts.contracts import CreateTransferRequest
from wallet_hub.exceptions import (
    DestinationUnresolvable,
    FundingSourceUnavailable,
    MalformedResponse,
    PreconditionFailed,
    ProviderError,
    WalletHubError,
)
from wallet_hub.helpers import format_amount, new_idempotency_key
from wallet_hub.logging_config import get_logger
from wallet_hub.models import TransferRecord
from wallet_hub.normalizer import normalize_transaction, normalize_wallet, normalize_wallet_list, transfer_status
from wallet_hub.transfers import TransferLedger
from wallet_hub.wallet_set import WalletSetRegistry

logger = get_logger(__name__)


class TransferOutcome(BaseModel):
    transfer_id: int
    status: TransferStatus
    from_wallet_id: str
    to_wallet_id: str
    amount: Decimal
    currency: str
    claim_id: Optional[str] = None
    provider_transfer_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    error_details: Optional[Any] = None

    @classmethod
    def from_record(cls, record: TransferRecord, error: WalletHubError | None = None) -> "TransferOutcome":
        return cls(
            transfer_id=record.id,
            status=TransferStatus(record.status),
            from_wallet_id=record.from_wallet_id,
            to_wallet_id=record.to_wallet_id,
            amount=record.amount,
            currency=record.currency,
            claim_id=record.claim_id,
            provider_transfer_id=record.provider_transfer_id,
            completed_at=record.completed_at,
            error=error.message if error else record.error_message,
            error_details=error.raw_details if error else None,
        )


class FundingOrchestrator:
    def __init__(self, db: Session, client: CustodyClient, settings: Settings, wallet_sets: WalletSetRegistry):
        self.db = db
        self.client = client
        self.settings = settings
        self.wallet_sets = wallet_sets
        self.ledger = TransferLedger(db)

    async def fund(
        self,
        target_wallet_id: str,
        amount: Decimal,
        claim_id: str | None = None,
        timeout: Optional[float] = None,
    ) -> TransferOutcome:
        self.client.ensure_configured()
        amount = _positive(amount)
        source_wallet_id = await self.resolve_system_wallet(timeout=timeout)
        destination = await self.resolve_address(target_wallet_id, timeout=timeout)
        record = self.ledger.open(source_wallet_id, target_wallet_id, amount, claim_id=claim_id)
        memo = f"Test deposit of {format_amount(amount)} {self.settings.currency}"
        return await self._execute_funding(record, destination, memo, timeout=timeout)

    async def retry_pending(self, transfer_id: int, timeout: Optional[float] = None) -> TransferOutcome:
        """Re-issue a pending transfer under a new idempotency key."""
        self.client.ensure_configured()
        record = self.ledger.get(transfer_id)
        if record.status != TransferStatus.PENDING.value:
            raise PreconditionFailed(f"transfer {transfer_id} is {record.status}, only pending transfers can be retried")
        if record.provider_transfer_id:
            raise PreconditionFailed(
                f"transfer {transfer_id} was accepted by the provider as {record.provider_transfer_id}; refresh it instead"
            )
        destination = await self.resolve_address(record.to_wallet_id, timeout=timeout)
        memo = f"Retry of transfer {record.id}"
        logger.info("Retrying pending transfer id=%s", record.id)
        return await self._execute_funding(record, destination, memo, timeout=timeout)

    async def transfer(
        self,
        from_wallet_id: str,
        to_wallet_id: str,
        amount: Decimal,
        claim_id: str | None = None,
        description: str | None = None,
        timeout: Optional[float] = None,
    ) -> TransferOutcome:
        self.client.ensure_configured()
        amount = _positive(amount)
        destination = await self.resolve_address(to_wallet_id, timeout=timeout)
        record = self.ledger.open(from_wallet_id, to_wallet_id, amount, claim_id=claim_id)
        memo = description or f"Payment for claim {claim_id}"
        try:
            provider_transfer_id = await self._issue(record, destination, memo, timeout=timeout)
        except (ProviderError, MalformedResponse) as exc:
            self._record_rejection(record, exc)
            raise
        self.ledger.mark_completed(record, provider_transfer_id)
        return TransferOutcome.from_record(record)

    async def refresh(self, transfer_id: int, timeout: Optional[float] = None) -> TransferOutcome:
        """Look up the provider's view of a recorded transfer and apply it."""
        self.client.ensure_configured()
        record = self.ledger.get(transfer_id)
        if record.status != TransferStatus.PENDING.value or not record.provider_transfer_id:
            return TransferOutcome.from_record(record)
        payload = await self.client.get_transaction(record.provider_transfer_id, timeout=timeout)
        txn = normalize_transaction(payload)
        status = transfer_status(txn.state)
        if status == TransferStatus.COMPLETED:
            self.ledger.mark_completed(record, record.provider_transfer_id)
        elif status == TransferStatus.FAILED:
            self.ledger.mark_failed(record, f"provider reported state {txn.state}")
        return TransferOutcome.from_record(record)

    async def resolve_system_wallet(self, timeout: Optional[float] = None) -> str:
        if self.settings.system_wallet_id:
            return self.settings.system_wallet_id
        wallet_set_id = self.wallet_sets.get()
        if not wallet_set_id:
            raise FundingSourceUnavailable(
                "no system wallet configured and no wallet set to search; set SYSTEM_WALLET_ID"
            )
        payload = await self.client.list_wallets(wallet_set_id, timeout=timeout)
        for wallet in normalize_wallet_list(payload):
            # Only wallets provisioned for the system entity are candidates.
            if not (wallet.ref_id or "").startswith(f"{EntityType.SYSTEM.value}:"):
                continue
            description = (wallet.description or "").lower()
            if any(marker in description for marker in SYSTEM_WALLET_MARKERS):
                logger.info("Found system wallet wallet_id=%s in wallet_set_id=%s", wallet.id, wallet_set_id)
                return wallet.id
        raise FundingSourceUnavailable(
            f"system funding wallet not found in wallet set {wallet_set_id}; "
            "create one and fund it, or set SYSTEM_WALLET_ID"
        )

    async def resolve_address(self, wallet_id: str, timeout: Optional[float] = None) -> str:
        try:
            wallet = normalize_wallet(await self.client.get_wallet(wallet_id, timeout=timeout))
        except (ProviderError, MalformedResponse) as exc:
            raise DestinationUnresolvable(
                f"could not resolve address of wallet {wallet_id}", raw_details=exc.raw_details
            ) from exc
        if not wallet.address:
            raise DestinationUnresolvable(f"wallet {wallet_id} has no address", raw_details=wallet.model_dump())
        return wallet.address

    async def _execute_funding(
        self, record: TransferRecord, destination: str, memo: str, timeout: Optional[float] = None
    ) -> TransferOutcome:
        try:
            provider_transfer_id = await self._issue(record, destination, memo, timeout=timeout)
        except (ProviderError, MalformedResponse) as exc:
            if not self.settings.funding_pending_on_failure:
                self._record_rejection(record, exc)
                raise
            # Degrade-to-pending: the source wallet is probably not funded yet.
            logger.warning(
                "Funding transfer left pending id=%s from=%s to=%s error=%s",
                record.id,
                record.from_wallet_id,
                record.to_wallet_id,
                exc.message,
            )
            self.ledger.keep_pending(record, exc.message)
            return TransferOutcome.from_record(record, error=exc)
        self.ledger.mark_completed(record, provider_transfer_id)
        return TransferOutcome.from_record(record)

    def _record_rejection(self, record: TransferRecord, exc: ProviderError | MalformedResponse):
        # A timed-out or unreadable call may still settle; only a definite rejection is terminal.
        if exc.outcome_unknown:
            self.ledger.keep_pending(record, exc.message)
        else:
            self.ledger.mark_failed(record, exc.message)

    async def _issue(self, record: TransferRecord, destination: str, memo: str, timeout: Optional[float] = None) -> str:
        idempotency_key = new_idempotency_key()
        request = CreateTransferRequest.from_funding(
            self.settings,
            idempotency_key,
            record.from_wallet_id,
            destination,
            format_amount(record.amount),
            memo,
        )
        logger.info(
            "Issuing transfer id=%s from=%s to=%s amount=%s idempotency_key=%s",
            record.id,
            record.from_wallet_id,
            destination,
            record.amount,
            idempotency_key,
        )
        payload = await self.client.create_transfer(request, timeout=timeout)
        try:
            return normalize_transaction(payload).id
        except MalformedResponse as exc:
            raise ProviderError("transfer response carried no transaction id", raw_details=payload) from exc


def _positive(amount) -> Decimal:
    amount = Decimal(str(amount))
    if amount <= 0:
        raise PreconditionFailed("amount must be positive")
    return amount

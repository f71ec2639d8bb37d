from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from wallet_hub.config import TransferStatus, settings
from wallet_hub.exceptions import NotFound, PreconditionFailed
from wallet_hub.logging_config import get_logger
from wallet_hub.models import TransferRecord

logger = get_logger(__name__)

TERMINAL_STATUSES = {TransferStatus.COMPLETED.value, TransferStatus.FAILED.value}


class TransferLedger:
    def __init__(self, db: Session):
        self.db = db

    def get(self, transfer_id: int) -> TransferRecord:
        record = self.db.get(TransferRecord, transfer_id)
        if record is None:
            raise NotFound(f"transfer {transfer_id} not found")
        return record

    def get_by_provider_id(self, provider_transfer_id: str) -> Optional[TransferRecord]:
        return (
            self.db.query(TransferRecord)
            .filter(TransferRecord.provider_transfer_id == provider_transfer_id)
            .first()
        )

    def list(self, claim_id: str | None = None, status: str | None = None) -> List[TransferRecord]:
        query = self.db.query(TransferRecord)
        if claim_id:
            query = query.filter(TransferRecord.claim_id == claim_id)
        if status:
            query = query.filter(TransferRecord.status == status)
        return query.order_by(TransferRecord.created_at.desc(), TransferRecord.id.desc()).all()

    def open(self, from_wallet_id: str, to_wallet_id: str, amount: Decimal, claim_id: str | None = None) -> TransferRecord:
        if amount <= 0:
            raise PreconditionFailed("transfer amount must be positive")
        record = TransferRecord(
            claim_id=claim_id,
            from_wallet_id=from_wallet_id,
            to_wallet_id=to_wallet_id,
            amount=amount,
            currency=settings.currency,
            status=TransferStatus.PENDING.value,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info(
            "Opened transfer record id=%s from=%s to=%s amount=%s claim_id=%s",
            record.id,
            from_wallet_id,
            to_wallet_id,
            amount,
            claim_id,
        )
        return record

    def mark_completed(self, record: TransferRecord, provider_transfer_id: str) -> TransferRecord:
        self._ensure_open(record)
        if not provider_transfer_id:
            raise PreconditionFailed("completed transfers need a provider transfer id")
        record.status = TransferStatus.COMPLETED.value
        record.provider_transfer_id = provider_transfer_id
        record.completed_at = datetime.now(timezone.utc)
        record.error_message = None
        return self._save(record)

    def mark_failed(self, record: TransferRecord, error_message: str | None) -> TransferRecord:
        self._ensure_open(record)
        record.status = TransferStatus.FAILED.value
        record.error_message = error_message
        return self._save(record)

    def keep_pending(
        self,
        record: TransferRecord,
        error_message: str | None,
        provider_transfer_id: str | None = None,
    ) -> TransferRecord:
        self._ensure_open(record)
        record.error_message = error_message
        if provider_transfer_id:
            record.provider_transfer_id = provider_transfer_id
        return self._save(record)

    def _ensure_open(self, record: TransferRecord):
        if record.status in TERMINAL_STATUSES:
            raise PreconditionFailed(f"transfer {record.id} is already {record.status}")

    def _save(self, record: TransferRecord) -> TransferRecord:
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info(
            "Transfer record id=%s status=%s provider_transfer_id=%s",
            record.id,
            record.status,
            record.provider_transfer_id,
        )
        return record

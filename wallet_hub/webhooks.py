from typing import Any

from sqlalchemy.orm import Session

from wallet_hub.config import TransferStatus
from wallet_hub.logging_config import get_logger
from wallet_hub.normalizer import normalize_transaction, transfer_status
from wallet_hub.transfers import TERMINAL_STATUSES, TransferLedger

logger = get_logger(__name__)


def handle_transfer_notification(db: Session, payload: Any) -> dict:
    """
    Apply a verified transfer-status notification to its Transfer Record.

    Only pending records move; completed and failed records are never re-opened.
    """
    txn = normalize_transaction(payload)
    notification_type = payload.get("notificationType") if isinstance(payload, dict) else None
    logger.info(
        "Received custody notification type=%s transaction_id=%s state=%s",
        notification_type,
        txn.id,
        txn.state,
    )
    ledger = TransferLedger(db)
    record = ledger.get_by_provider_id(txn.id)
    if record is None:
        logger.warning("Notification for unknown transaction_id=%s ignored", txn.id)
        return {"status": "ignored", "reason": "unknown transaction"}

    new_status = transfer_status(txn.state)
    if record.status in TERMINAL_STATUSES:
        if new_status.value != record.status and new_status != TransferStatus.PENDING:
            logger.warning(
                "Notification state=%s conflicts with terminal transfer id=%s status=%s; keeping recorded status",
                txn.state,
                record.id,
                record.status,
            )
        return {"status": "unchanged", "transferId": record.id, "transferStatus": record.status}

    if new_status == TransferStatus.COMPLETED:
        ledger.mark_completed(record, txn.id)
    elif new_status == TransferStatus.FAILED:
        ledger.mark_failed(record, f"provider reported state {txn.state}")
    return {"status": "accepted", "transferId": record.id, "transferStatus": record.status}

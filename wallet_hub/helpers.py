import uuid
from decimal import Decimal

from wallet_hub.models import TransferRecord, WalletAccount


def new_idempotency_key() -> str:
    """A fresh v4 UUID; never reused across calls, including retries."""
    return str(uuid.uuid4())


def format_amount(amount: Decimal) -> str:
    return format(Decimal(amount).normalize(), "f")


def serialize_account(account: WalletAccount) -> dict:
    return {
        "id": account.id,
        "entityType": account.entity_type,
        "entityId": account.entity_id,
        "walletId": account.wallet_id,
        "walletSetId": account.wallet_set_id,
        "address": account.address,
        "blockchain": account.blockchain,
        "currency": account.currency,
        "status": account.status,
        "createdAt": account.created_at.isoformat() if account.created_at else None,
    }


def serialize_transfer(record: TransferRecord) -> dict:
    return {
        "id": record.id,
        "claimId": record.claim_id,
        "fromWalletId": record.from_wallet_id,
        "toWalletId": record.to_wallet_id,
        "amount": format_amount(record.amount),
        "currency": record.currency,
        "providerTransferId": record.provider_transfer_id,
        "status": record.status,
        "errorMessage": record.error_message,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "completedAt": record.completed_at.isoformat() if record.completed_at else None,
    }

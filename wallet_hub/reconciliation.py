import csv
from io import StringIO
from typing import List, Tuple

from sqlalchemy.orm import Session

from wallet_hub.clients.custody_client import CustodyClient
from wallet_hub.helpers import format_amount
from wallet_hub.logging_config import get_logger
from wallet_hub.models import TransferRecord
from wallet_hub.normalizer import normalize_transaction, transfer_status

logger = get_logger(__name__)

NOT_SUBMITTED = "not_submitted"


async def generate_reconciliation_csv(db: Session, client: CustodyClient) -> Tuple[str, int]:
    """
    Compare local transfer records with the provider's transaction state and
    return CSV text of the mismatches plus their count.

    Pending records without a provider id (funding attempts the provider
    rejected) are always listed; they need an operator retry. Nothing is
    modified.
    """
    client.ensure_configured()
    records: List[TransferRecord] = db.query(TransferRecord).order_by(TransferRecord.id).all()

    mismatches: List[tuple] = []
    for record in records:
        if not record.provider_transfer_id:
            mismatches.append(_row(record, NOT_SUBMITTED))
            continue
        payload = await client.get_transaction(record.provider_transfer_id)
        remote_status = transfer_status(normalize_transaction(payload).state).value
        if remote_status != record.status:
            mismatches.append(_row(record, remote_status))

    logger.info("Reconciliation complete with %s mismatches out of %s transfers", len(mismatches), len(records))
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["transferId", "providerTransferId", "claimId", "amount", "localStatus", "remoteStatus"])
    for row in mismatches:
        writer.writerow(row)

    return output.getvalue(), len(mismatches)


def _row(record: TransferRecord, remote_status: str) -> tuple:
    return (
        record.id,
        record.provider_transfer_id or "",
        record.claim_id or "",
        format_amount(record.amount),
        record.status,
        remote_status,
    )

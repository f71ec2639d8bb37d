import asyncio
import sys

from wallet_hub.clients.custody_client import custody_client
from wallet_hub.database import SessionLocal
from wallet_hub.reconciliation import generate_reconciliation_csv


async def reconcile(output_path: str = "reconciliation.csv") -> int:
    db = SessionLocal()
    try:
        csv_text, mismatch_count = await generate_reconciliation_csv(db, custody_client)
    finally:
        db.close()
    with open(output_path, "w", newline="") as f:
        f.write(csv_text)
    return 1 if mismatch_count else 0


if __name__ == "__main__":
    exit_code = asyncio.run(reconcile(*sys.argv[1:2]))
    raise SystemExit(exit_code)

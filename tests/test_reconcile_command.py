import asyncio
from decimal import Decimal

from wallet_hub.commands import reconcile as reconcile_command
from wallet_hub.transfers import TransferLedger


def test_reconcile_writes_report_and_signals_mismatches(tmp_path, monkeypatch, session_factory, custody_client, custody_state):
    with session_factory() as session:
        ledger = TransferLedger(session)
        ledger.open("wallet-a", "wallet-b", Decimal("1.5"), claim_id="claim-1")
        ledger.mark_completed(ledger.open("wallet-a", "wallet-b", Decimal("2")), "tx-done")
    custody_state.transactions["tx-done"] = {"id": "tx-done", "state": "FAILED"}

    monkeypatch.setattr(reconcile_command, "SessionLocal", session_factory)
    monkeypatch.setattr(reconcile_command, "custody_client", custody_client)
    output = tmp_path / "report.csv"

    assert asyncio.run(reconcile_command.reconcile(str(output))) == 1
    lines = output.read_text().splitlines()
    assert lines[0] == "transferId,providerTransferId,claimId,amount,localStatus,remoteStatus"
    assert lines[1:] == ["1,,claim-1,1.5,pending,not_submitted", "2,tx-done,,2,completed,failed"]


def test_reconcile_clean_ledger_exits_zero(tmp_path, monkeypatch, session_factory, custody_client):
    monkeypatch.setattr(reconcile_command, "SessionLocal", session_factory)
    monkeypatch.setattr(reconcile_command, "custody_client", custody_client)
    output = tmp_path / "report.csv"

    assert asyncio.run(reconcile_command.reconcile(str(output))) == 0
    assert output.read_text().splitlines() == ["transferId,providerTransferId,claimId,amount,localStatus,remoteStatus"]

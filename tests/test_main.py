import csv
from decimal import Decimal
from io import StringIO

from tests.conftest import custody_client_for, make_settings
from wallet_hub import main, security
from wallet_hub.clients.custody_client import get_custody_client
from wallet_hub.security import require_bearer_token


def _provision(client, entity_type, entity_id, description=None):
    resp = client.post(
        "/accounts",
        json={"entityType": entity_type, "entityId": entity_id, "description": description},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_wallet_set_create_and_current(client, custody_state):
    assert client.get("/wallet-sets/current").json() == {"walletSetId": None}

    resp = client.post("/wallet-sets", json={"name": "Billing", "description": "claims"})
    assert resp.status_code == 200
    wallet_set_id = resp.json()["walletSetId"]
    assert wallet_set_id in custody_state.wallet_sets
    assert client.get("/wallet-sets/current").json() == {"walletSetId": wallet_set_id}


def test_account_lifecycle(client, custody_state):
    account = _provision(client, "provider", "prov-1", "Acme Clinic")
    assert account["walletId"] in custody_state.wallets
    assert account["status"] == "active"

    again = _provision(client, "provider", "prov-1")
    assert again["walletId"] == account["walletId"]

    _provision(client, "insurer", "ins-1")
    assert [a["entityId"] for a in client.get("/accounts").json()] == ["prov-1", "ins-1"]
    assert [a["entityId"] for a in client.get("/accounts", params={"entity_type": "insurer"}).json()] == ["ins-1"]

    assert client.get("/accounts/provider/prov-1").json()["id"] == account["id"]

    suspended = client.post("/accounts/provider/prov-1/suspend")
    assert suspended.json()["status"] == "suspended"
    missing = client.get("/accounts/provider/prov-1")
    assert missing.status_code == 404
    assert missing.json()["kind"] == "NotFound"


def test_unknown_entity_type_is_validation_error(client):
    resp = client.post("/accounts", json={"entityType": "clinic", "entityId": "c1"})
    assert resp.status_code == 422


def test_unconfigured_provider_answers_503(client, custody_state):
    unconfigured = custody_client_for(make_settings(custody_api_key=None))
    main.app.dependency_overrides[get_custody_client] = lambda: unconfigured

    resp = client.post("/accounts", json={"entityType": "provider", "entityId": "prov-1"})
    assert resp.status_code == 503
    assert resp.json()["kind"] == "ServiceUnavailable"
    assert client.get("/wallets/wallet-1/balance").status_code == 503
    assert custody_state.idempotency_keys == []


def test_balance_route(client, custody_state):
    account = _provision(client, "provider", "prov-1")
    custody_state.balances[account["walletId"]] = Decimal("12.500000")

    resp = client.get(f"/wallets/{account['walletId']}/balance")
    assert resp.status_code == 200
    assert resp.json() == {
        "walletId": account["walletId"],
        "balances": [{"symbol": "USDC", "amount": "12.5"}],
        "degraded": False,
    }


def test_fund_route_pending_then_retry(client, custody_state):
    system = _provision(client, "system", "funding", "System funding wallet")
    provider = _provision(client, "provider", "prov-1")

    resp = client.post(f"/wallets/{provider['walletId']}/fund", json={"amount": "10", "claimId": "claim-1"})
    assert resp.status_code == 202
    body = resp.json()
    assert body["status"] == "pending"
    assert body["fromWalletId"] == system["walletId"]
    assert body["errorDetails"]["detail"]["message"] == "insufficient funds"

    custody_state.balances[system["walletId"]] = Decimal("10")
    retried = client.post(f"/transfers/{body['id']}/retry")
    assert retried.status_code == 200
    assert retried.json()["status"] == "completed"
    assert retried.json()["providerTransferId"]

    assert client.get(f"/transfers/{body['id']}").json()["status"] == "completed"
    assert [t["id"] for t in client.get("/transfers", params={"claim_id": "claim-1"}).json()] == [body["id"]]


def test_fund_route_without_source(client):
    provider = _provision(client, "provider", "prov-1")
    resp = client.post(f"/wallets/{provider['walletId']}/fund", json={"amount": "1"})
    assert resp.status_code == 409
    assert resp.json()["kind"] == "FundingSourceUnavailable"
    assert client.get("/transfers").json() == []


def test_fund_route_rejects_non_positive_amount(client):
    assert client.post("/wallets/wallet-1/fund", json={"amount": "0"}).status_code == 422


def test_claim_payment_route(client, custody_state):
    insurer = _provision(client, "insurer", "ins-1")
    provider = _provision(client, "provider", "prov-1")
    custody_state.balances[insurer["walletId"]] = Decimal("100")

    resp = client.post(
        "/transfers",
        json={
            "fromWalletId": insurer["walletId"],
            "toWalletId": provider["walletId"],
            "amount": "25.75",
            "claimId": "claim-7",
        },
    )
    assert resp.status_code == 200
    assert resp.json()["amount"] == "25.75"
    assert resp.json()["status"] == "completed"

    refreshed = client.post(f"/transfers/{resp.json()['id']}/refresh")
    assert refreshed.json()["status"] == "completed"

    rejected = client.post(
        "/transfers",
        json={"fromWalletId": provider["walletId"], "toWalletId": insurer["walletId"], "amount": "1000"},
    )
    assert rejected.status_code == 502
    assert rejected.json()["kind"] == "ProviderError"
    assert [t["status"] for t in client.get("/transfers", params={"status": "failed"}).json()] == ["failed"]


def test_transfer_not_found(client):
    resp = client.get("/transfers/999")
    assert resp.status_code == 404
    assert resp.json()["kind"] == "NotFound"


def test_patient_wallet_routes(client, register_patient, custody_state):
    register_patient("p1", name="Jane Roe", phone="+15550001")

    assert client.get("/patients/p1/wallet").status_code == 404

    created = client.post("/patients/p1/wallet")
    assert created.status_code == 200
    assert created.json()["entityType"] == "patient"

    assert client.get("/patients/p1/wallet").json()["walletId"] == created.json()["walletId"]
    by_phone = client.post("/patients/wallet/lookup", json={"phone": "+15550001"})
    assert by_phone.json()["walletId"] == created.json()["walletId"]
    assert len(custody_state.wallets) == 1


def test_patient_wallet_for_unknown_patient(client, registry_client):
    resp = client.post("/patients/ghost/wallet")
    assert resp.status_code == 404
    assert resp.json()["kind"] == "UnknownPatient"


def test_patient_lookup_requires_contact(client):
    assert client.post("/patients/wallet/lookup", json={}).status_code == 422


def test_reconciliation_lists_unsubmitted_transfers(client, custody_state):
    system = _provision(client, "system", "funding", "System funding wallet")
    provider = _provision(client, "provider", "prov-1")
    custody_state.balances[system["walletId"]] = Decimal("5")

    completed = client.post(f"/wallets/{provider['walletId']}/fund", json={"amount": "5"}).json()
    pending = client.post(f"/wallets/{provider['walletId']}/fund", json={"amount": "5", "claimId": "claim-2"}).json()
    assert completed["status"] == "completed"
    assert pending["status"] == "pending"

    resp = client.get("/reconciliation_data")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert resp.headers["X-Mismatch-Count"] == "1"
    rows = list(csv.DictReader(StringIO(resp.text)))
    assert rows == [
        {
            "transferId": str(pending["id"]),
            "providerTransferId": "",
            "claimId": "claim-2",
            "amount": "5",
            "localStatus": "pending",
            "remoteStatus": "not_submitted",
        }
    ]


def test_bearer_token_enforced_when_configured(client, monkeypatch):
    main.app.dependency_overrides.pop(require_bearer_token)
    monkeypatch.setattr(security.default_settings, "bearer_token", "testtoken")

    assert client.post("/wallet-sets", json={}).status_code == 401
    wrong = client.post("/wallet-sets", json={}, headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401
    ok = client.post("/wallet-sets", json={}, headers={"Authorization": "Bearer testtoken"})
    assert ok.status_code == 200

import asyncio
import hashlib
import hmac
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("mock-custody")

app = FastAPI(title="Mock Custody Provider")

USDC_SYMBOL = "USDC"
INTEGRATION_WEBHOOK_URL = os.getenv("INTEGRATION_WEBHOOK_URL")
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET")


class WalletSetBody(BaseModel):
    idempotencyKey: str
    entitySecretCiphertext: str
    name: str


class WalletMetadata(BaseModel):
    name: Optional[str] = None
    refId: Optional[str] = None


class WalletsBody(BaseModel):
    idempotencyKey: str
    entitySecretCiphertext: str
    walletSetId: str
    accountType: str
    blockchains: List[str]
    count: int = 1
    metadata: List[WalletMetadata] = []


class TransferBody(BaseModel):
    idempotencyKey: str
    entitySecretCiphertext: str
    walletId: str
    destinationAddress: str
    amounts: List[str]
    tokenId: str
    feeLevel: str
    refId: Optional[str] = None


class FaucetBody(BaseModel):
    amount: str


class FaultsBody(BaseModel):
    endpoints: List[str] = []


class CustodyState:
    """In-memory provider state; one instance per mock process."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.wallet_sets: Dict[str, dict] = {}
        self.wallets: Dict[str, dict] = {}
        self.balances: Dict[str, Decimal] = {}
        self.transactions: Dict[str, dict] = {}
        self.responses_by_key: Dict[str, dict] = {}
        self.idempotency_keys: List[str] = []
        self.faults: set = set()


state = CustodyState()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def require_api_key(authorization: Optional[str] = Header(None)):
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail={"code": 401, "message": "Malformed authorization"})


def _maybe_fail(endpoint: str):
    if endpoint in state.faults:
        logger.warning("Injected fault for endpoint=%s", endpoint)
        raise HTTPException(status_code=500, detail={"code": -1, "message": f"injected failure: {endpoint}"})


def _replayed(key: str) -> Optional[dict]:
    state.idempotency_keys.append(key)
    existing = state.responses_by_key.get(key)
    if existing is not None:
        logger.info("Replaying response for idempotencyKey=%s", key)
    return existing


def _token_balances(wallet_id: str) -> List[dict]:
    amount = state.balances.get(wallet_id, Decimal("0"))
    if amount <= 0:
        return []
    wallet = state.wallets[wallet_id]
    return [
        {
            "token": {"symbol": USDC_SYMBOL, "blockchain": wallet["blockchain"], "decimals": 6},
            "amount": format(amount, "f"),
            "updateDate": _now(),
        }
    ]


def _wallet_or_404(wallet_id: str) -> dict:
    wallet = state.wallets.get(wallet_id)
    if wallet is None:
        raise HTTPException(status_code=404, detail={"code": 156001, "message": "wallet not found"})
    return wallet


async def _send_callback(transaction: dict):
    body = json.dumps(
        {
            "subscriptionId": "mock-subscription",
            "notificationId": str(uuid.uuid4()),
            "notificationType": "transactions.outbound",
            "notification": transaction,
        }
    ).encode()
    headers = {"Content-Type": "application/json"}
    if WEBHOOK_SECRET:
        digest = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()
        headers["X-Circle-Signature"] = f"v1={digest}"
    logger.info("Sending callback transaction_id=%s state=%s", transaction["id"], transaction["state"])
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(INTEGRATION_WEBHOOK_URL, content=body, headers=headers)
    except httpx.HTTPError:
        # Delivery is best effort in the mock.
        logger.warning("Failed to deliver callback for transaction_id=%s", transaction["id"])


@app.post("/v1/w3s/developer/walletSets", dependencies=[Depends(require_api_key)])
async def create_wallet_set(body: WalletSetBody):
    _maybe_fail("walletSets")
    existing = _replayed(body.idempotencyKey)
    if existing:
        return existing
    wallet_set = {"id": str(uuid.uuid4()), "custodyType": "DEVELOPER", "name": body.name, "createDate": _now()}
    state.wallet_sets[wallet_set["id"]] = wallet_set
    response = {"data": {"walletSet": wallet_set}}
    state.responses_by_key[body.idempotencyKey] = response
    logger.info("Created wallet set id=%s name=%s", wallet_set["id"], body.name)
    return response


@app.post("/v1/w3s/developer/wallets", dependencies=[Depends(require_api_key)])
async def create_wallets(body: WalletsBody):
    _maybe_fail("wallets")
    existing = _replayed(body.idempotencyKey)
    if existing:
        return existing
    if body.walletSetId not in state.wallet_sets:
        raise HTTPException(status_code=404, detail={"code": 156002, "message": "wallet set not found"})
    created = []
    for blockchain in body.blockchains:
        for index in range(body.count):
            metadata = body.metadata[index] if index < len(body.metadata) else WalletMetadata()
            wallet = {
                "id": str(uuid.uuid4()),
                "address": "0x" + uuid.uuid4().hex + uuid.uuid4().hex[:8],
                "blockchain": blockchain,
                "accountType": body.accountType,
                "state": "LIVE",
                "walletSetId": body.walletSetId,
                "custodyType": "DEVELOPER",
                "name": metadata.name,
                "refId": metadata.refId,
                "createDate": _now(),
            }
            state.wallets[wallet["id"]] = wallet
            created.append(wallet)
    response = {"data": {"wallets": created}}
    state.responses_by_key[body.idempotencyKey] = response
    logger.info("Created %s wallets in wallet_set=%s", len(created), body.walletSetId)
    return response


@app.get("/v1/w3s/wallets/{wallet_id}", dependencies=[Depends(require_api_key)])
async def get_wallet(wallet_id: str):
    _maybe_fail("wallet")
    return {"data": {"wallet": _wallet_or_404(wallet_id)}}


@app.get("/v1/w3s/wallets", dependencies=[Depends(require_api_key)])
async def list_wallets(walletSetId: Optional[str] = None):
    _maybe_fail("listWallets")
    wallets = [w for w in state.wallets.values() if walletSetId is None or w["walletSetId"] == walletSetId]
    return {"data": {"wallets": wallets}}


@app.get("/v1/w3s/developer/wallets/balances", dependencies=[Depends(require_api_key)])
async def wallets_with_balances(walletId: Optional[str] = None, blockchain: Optional[str] = None):
    _maybe_fail("balances")
    wallets = [
        dict(w, tokenBalances=_token_balances(w["id"]))
        for w in state.wallets.values()
        if (walletId is None or w["id"] == walletId) and (blockchain is None or w["blockchain"] == blockchain)
    ]
    return {"data": {"wallets": wallets}}


@app.get("/v1/w3s/wallets/{wallet_id}/balances", dependencies=[Depends(require_api_key)])
async def token_balances(wallet_id: str):
    _maybe_fail("tokenBalances")
    _wallet_or_404(wallet_id)
    return {"data": {"tokenBalances": _token_balances(wallet_id)}}


@app.post("/v1/w3s/developer/transactions/transfer", dependencies=[Depends(require_api_key)])
async def create_transfer(body: TransferBody):
    _maybe_fail("transfer")
    existing = _replayed(body.idempotencyKey)
    if existing:
        return existing
    source = _wallet_or_404(body.walletId)
    destination = next((w for w in state.wallets.values() if w["address"] == body.destinationAddress), None)
    if destination is None:
        raise HTTPException(status_code=400, detail={"code": 156005, "message": "unknown destination address"})
    amount = sum(Decimal(a) for a in body.amounts)
    if state.balances.get(source["id"], Decimal("0")) < amount:
        logger.warning("Insufficient funds wallet=%s amount=%s", source["id"], amount)
        raise HTTPException(status_code=400, detail={"code": 155201, "message": "insufficient funds"})

    state.balances[source["id"]] -= amount
    state.balances[destination["id"]] = state.balances.get(destination["id"], Decimal("0")) + amount
    transaction = {
        "id": str(uuid.uuid4()),
        "state": "COMPLETE",
        "walletId": source["id"],
        "sourceAddress": source["address"],
        "destinationAddress": body.destinationAddress,
        "amounts": body.amounts,
        "tokenId": body.tokenId,
        "feeLevel": body.feeLevel,
        "refId": body.refId,
        "blockchain": source["blockchain"],
        "txHash": "0x" + uuid.uuid4().hex,
        "createDate": _now(),
    }
    state.transactions[transaction["id"]] = transaction
    response = {"data": {"id": transaction["id"], "state": "INITIATED"}}
    state.responses_by_key[body.idempotencyKey] = response
    logger.info("Transfer id=%s from=%s amount=%s", transaction["id"], source["id"], amount)
    if INTEGRATION_WEBHOOK_URL:
        asyncio.create_task(_send_callback(transaction))
    return response


@app.get("/v1/w3s/transactions/{transaction_id}", dependencies=[Depends(require_api_key)])
async def get_transaction(transaction_id: str):
    _maybe_fail("transaction")
    transaction = state.transactions.get(transaction_id)
    if transaction is None:
        raise HTTPException(status_code=404, detail={"code": 177001, "message": "transaction not found"})
    return {"data": {"transaction": transaction}}


@app.post("/admin/wallets/{wallet_id}/faucet")
async def faucet(wallet_id: str, body: FaucetBody):
    _wallet_or_404(wallet_id)
    state.balances[wallet_id] = state.balances.get(wallet_id, Decimal("0")) + Decimal(body.amount)
    logger.info("Faucet credited wallet=%s amount=%s", wallet_id, body.amount)
    return {"walletId": wallet_id, "amount": format(state.balances[wallet_id], "f")}


@app.post("/admin/faults")
async def set_faults(body: FaultsBody):
    state.faults = set(body.endpoints)
    return {"faults": sorted(state.faults)}


@app.get("/admin/idempotency-keys")
async def list_idempotency_keys():
    return {"keys": state.idempotency_keys}


@app.post("/admin/clear-db")
async def clear_db():
    """
    Dangerous: clears all mock custody state.
    """
    state.reset()
    logger.warning("Cleared mock custody state via admin endpoint")
    return {"status": "cleared"}

import json
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from wallet_hub import models
from wallet_hub.balances import BalanceReader
from wallet_hub.clients.custody_client import CustodyClient, get_custody_client
from wallet_hub.clients.registry_client import PatientRegistryClient, get_registry_client
from wallet_hub.config import EntityType, Settings, TransferStatus, get_settings
from wallet_hub.database import engine, get_db
from wallet_hub.directory import AccountDirectory
from wallet_hub.exceptions import MalformedResponse, NotFound, WalletHubError
from wallet_hub.funding import FundingOrchestrator, TransferOutcome
from wallet_hub.helpers import format_amount, serialize_account, serialize_transfer
from wallet_hub.logging_config import get_logger
from wallet_hub.patients import PatientWalletResolver
from wallet_hub.provisioning import WalletProvisioning
from wallet_hub.reconciliation import generate_reconciliation_csv
from wallet_hub.schemas import (
    AccountResponse,
    BalanceResponse,
    EntityWalletRequest,
    FundRequest,
    PatientContactRequest,
    TransferRequest,
    TransferResponse,
    WalletSetRequest,
    WalletSetResponse,
)
from wallet_hub.security import SIGNATURE_HEADER, require_bearer_token, verify_webhook_signature
from wallet_hub.transfers import TransferLedger
from wallet_hub.wallet_set import WalletSetRegistry, get_wallet_set_registry
from wallet_hub.webhooks import handle_transfer_notification


logger = get_logger(__name__)

app = FastAPI(title="Custody Wallet Hub")


@app.on_event("startup")
async def startup_event():
    logger.info("Starting Custody Wallet Hub")
    models.Base.metadata.create_all(bind=engine)


@app.exception_handler(WalletHubError)
async def wallet_hub_error_handler(request: Request, exc: WalletHubError):
    logger.warning("Request failed path=%s kind=%s detail=%s", request.url.path, exc.kind, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "kind": exc.kind, "details": _jsonable(exc.raw_details)},
    )


def get_provisioning(
    client: CustodyClient = Depends(get_custody_client),
    settings: Settings = Depends(get_settings),
    wallet_sets: WalletSetRegistry = Depends(get_wallet_set_registry),
) -> WalletProvisioning:
    return WalletProvisioning(client, settings, wallet_sets)


def get_funding(
    db: Session = Depends(get_db),
    client: CustodyClient = Depends(get_custody_client),
    settings: Settings = Depends(get_settings),
    wallet_sets: WalletSetRegistry = Depends(get_wallet_set_registry),
) -> FundingOrchestrator:
    return FundingOrchestrator(db, client, settings, wallet_sets)


def get_patient_resolver(
    db: Session = Depends(get_db),
    provisioning: WalletProvisioning = Depends(get_provisioning),
    registry: PatientRegistryClient = Depends(get_registry_client),
) -> PatientWalletResolver:
    return PatientWalletResolver(db, provisioning, registry)


@app.post("/wallet-sets", response_model=WalletSetResponse)
async def create_wallet_set(
    request: WalletSetRequest,
    _auth=Depends(require_bearer_token),
    provisioning: WalletProvisioning = Depends(get_provisioning),
    wallet_sets: WalletSetRegistry = Depends(get_wallet_set_registry),
):
    wallet_set_id = await provisioning.create_wallet_set(request.name, request.description)
    # An explicitly created set becomes the current one.
    wallet_sets.set(wallet_set_id)
    return {"walletSetId": wallet_set_id}


@app.get("/wallet-sets/current", response_model=WalletSetResponse)
async def current_wallet_set(wallet_sets: WalletSetRegistry = Depends(get_wallet_set_registry)):
    return {"walletSetId": wallet_sets.get()}


@app.post("/accounts", response_model=AccountResponse)
async def provision_account(
    request: EntityWalletRequest,
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    provisioning: WalletProvisioning = Depends(get_provisioning),
):
    account = await provisioning.provision_entity_wallet(db, request.entityType, request.entityId, request.description)
    return serialize_account(account)


@app.get("/accounts", response_model=list[AccountResponse])
async def list_accounts(entity_type: Optional[EntityType] = None, db: Session = Depends(get_db)):
    return [serialize_account(a) for a in AccountDirectory(db).list(entity_type)]


@app.get("/accounts/{entity_type}/{entity_id}", response_model=AccountResponse)
async def get_account(entity_type: EntityType, entity_id: str, db: Session = Depends(get_db)):
    account = AccountDirectory(db).lookup(entity_type, entity_id)
    if account is None:
        raise NotFound(f"no active account for {entity_type.value}:{entity_id}")
    return serialize_account(account)


@app.post("/accounts/{entity_type}/{entity_id}/suspend", response_model=AccountResponse)
async def suspend_account(
    entity_type: EntityType,
    entity_id: str,
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
):
    return serialize_account(AccountDirectory(db).suspend(entity_type, entity_id))


@app.get("/wallets/{wallet_id}/balance", response_model=BalanceResponse)
async def wallet_balance(
    wallet_id: str,
    client: CustodyClient = Depends(get_custody_client),
    settings: Settings = Depends(get_settings),
):
    snapshot = await BalanceReader(client, settings).get_balance(wallet_id)
    return {
        "walletId": snapshot.wallet_id,
        "balances": [{"symbol": b.symbol, "amount": format_amount(b.amount)} for b in snapshot.balances],
        "degraded": snapshot.degraded,
    }


@app.post("/wallets/{wallet_id}/fund", response_model=TransferResponse)
async def fund_wallet(
    wallet_id: str,
    request: FundRequest,
    response: Response,
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    funding: FundingOrchestrator = Depends(get_funding),
):
    outcome = await funding.fund(wallet_id, request.amount, claim_id=request.claimId)
    return _outcome_response(db, outcome, response)


@app.post("/transfers", response_model=TransferResponse)
async def create_transfer(
    request: TransferRequest,
    response: Response,
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    funding: FundingOrchestrator = Depends(get_funding),
):
    outcome = await funding.transfer(
        request.fromWalletId,
        request.toWalletId,
        request.amount,
        claim_id=request.claimId,
        description=request.description,
    )
    return _outcome_response(db, outcome, response)


@app.get("/transfers", response_model=list[TransferResponse])
async def list_transfers(
    claim_id: Optional[str] = None,
    status: Optional[TransferStatus] = None,
    db: Session = Depends(get_db),
):
    records = TransferLedger(db).list(claim_id=claim_id, status=status.value if status else None)
    return [serialize_transfer(r) for r in records]


@app.get("/transfers/{transfer_id}", response_model=TransferResponse)
async def get_transfer(transfer_id: int, db: Session = Depends(get_db)):
    return serialize_transfer(TransferLedger(db).get(transfer_id))


@app.post("/transfers/{transfer_id}/refresh", response_model=TransferResponse)
async def refresh_transfer(
    transfer_id: int,
    response: Response,
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    funding: FundingOrchestrator = Depends(get_funding),
):
    return _outcome_response(db, await funding.refresh(transfer_id), response)


@app.post("/transfers/{transfer_id}/retry", response_model=TransferResponse)
async def retry_transfer(
    transfer_id: int,
    response: Response,
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    funding: FundingOrchestrator = Depends(get_funding),
):
    return _outcome_response(db, await funding.retry_pending(transfer_id), response)


@app.post("/patients/{patient_id}/wallet", response_model=AccountResponse)
async def get_or_create_patient_wallet(
    patient_id: str,
    resolver: PatientWalletResolver = Depends(get_patient_resolver),
):
    return serialize_account(await resolver.get_or_create(patient_id))


@app.get("/patients/{patient_id}/wallet", response_model=AccountResponse)
async def get_patient_wallet(
    patient_id: str,
    resolver: PatientWalletResolver = Depends(get_patient_resolver),
):
    return serialize_account(await resolver.get_or_create(patient_id, create_if_not_exists=False))


@app.post("/patients/wallet/lookup", response_model=AccountResponse)
async def patient_wallet_by_contact(
    request: PatientContactRequest,
    resolver: PatientWalletResolver = Depends(get_patient_resolver),
):
    if not request.phone and not request.email:
        raise HTTPException(status_code=422, detail="phone or email is required")
    return serialize_account(await resolver.get_by_contact(request.phone, request.email))


@app.post("/webhooks/custody")
async def receive_custody_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    raw_body = await request.body()
    if not verify_webhook_signature(request.headers.get(SIGNATURE_HEADER), raw_body, settings):
        raise HTTPException(status_code=401, detail="invalid signature")
    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid JSON body")
    try:
        return handle_transfer_notification(db, payload)
    except MalformedResponse as exc:
        raise HTTPException(status_code=400, detail=exc.message)


@app.get("/reconciliation_data")
async def download_reconciliation_csv(
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
    client: CustodyClient = Depends(get_custody_client),
):
    csv_text, mismatch_count = await generate_reconciliation_csv(db, client)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={
            "Content-Disposition": 'attachment; filename="reconciliation.csv"',
            "X-Mismatch-Count": str(mismatch_count),
        },
    )


@app.get("/health")
async def health():
    return {"status": "ok"}


def _outcome_response(db: Session, outcome: TransferOutcome, response: Response) -> dict:
    body = serialize_transfer(TransferLedger(db).get(outcome.transfer_id))
    body["errorDetails"] = _jsonable(outcome.error_details)
    if outcome.status == TransferStatus.PENDING:
        response.status_code = 202
    return body


def _jsonable(value):
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)

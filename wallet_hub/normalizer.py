"""
Canonical field extraction from custody provider responses.

The provider nests the same logical entity differently depending on the
endpoint (``data.wallet``, ``wallet``, ``data.wallets[0]``, the bare object
...). Each entity kind has an ordered list of candidate paths; the first
non-empty match wins. When the provider changes a shape, the fix is a new
entry in one of the path tables below.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from wallet_hub.config import TransferStatus, provider_transfer_status_map
from wallet_hub.exceptions import MalformedResponse

Path = Tuple[Any, ...]

WALLET_PATHS: Sequence[Path] = (
    ("data", "wallet"),
    ("wallet",),
    ("data", "wallets", 0),
    ("wallets", 0),
    ("data",),
    (),
)
WALLET_SET_PATHS: Sequence[Path] = (
    ("data", "walletSet"),
    ("walletSet",),
    ("data",),
    (),
)
WALLET_LIST_PATHS: Sequence[Path] = (
    ("data", "wallets"),
    ("wallets",),
    ("data",),
    (),
)
TRANSACTION_PATHS: Sequence[Path] = (
    ("data", "transaction"),
    ("transaction",),
    ("notification",),
    ("data",),
    (),
)
BALANCE_PATHS: Sequence[Path] = (
    ("data", "tokenBalances"),
    ("tokenBalances",),
    ("data", "wallets", 0, "tokenBalances"),
    ("data", "wallets", 0, "balances"),
    ("wallets", 0, "tokenBalances"),
    ("wallets", 0, "balances"),
    ("data", "balances"),
    ("balances",),
)


class NormalizedWallet(BaseModel):
    id: str
    address: Optional[str] = None
    blockchain: Optional[str] = None
    state: Optional[str] = None
    wallet_set_id: Optional[str] = None
    description: Optional[str] = None
    ref_id: Optional[str] = None


class NormalizedTransaction(BaseModel):
    id: str
    state: Optional[str] = None
    tx_hash: Optional[str] = None


class TokenBalance(BaseModel):
    symbol: str
    amount: Decimal


def _dig(payload: Any, path: Path) -> Any:
    node = payload
    for step in path:
        if isinstance(step, int):
            if not isinstance(node, list) or len(node) <= step:
                return None
            node = node[step]
        else:
            if not isinstance(node, dict):
                return None
            node = node.get(step)
        if node is None:
            return None
    return node


def _first(obj: dict, *keys: str) -> Any:
    for key in keys:
        value = obj.get(key)
        if value not in (None, ""):
            return value
    return None


def _first_object(payload: Any, paths: Sequence[Path], id_keys: Tuple[str, ...]) -> Optional[dict]:
    for path in paths:
        candidate = _dig(payload, path)
        if isinstance(candidate, dict) and _first(candidate, *id_keys):
            return candidate
    return None


def normalize_wallet(payload: Any) -> NormalizedWallet:
    wallet = _first_object(payload, WALLET_PATHS, ("id", "walletId"))
    if wallet is None:
        raise MalformedResponse("no wallet found in provider response", raw_details=payload)
    metadata = wallet.get("metadata") if isinstance(wallet.get("metadata"), dict) else {}
    return NormalizedWallet(
        id=str(_first(wallet, "id", "walletId")),
        address=_first(wallet, "address"),
        blockchain=_first(wallet, "blockchain"),
        state=_first(wallet, "state"),
        wallet_set_id=_first(wallet, "walletSetId"),
        description=_first(metadata, "description") or _first(wallet, "description", "name", "refId"),
        ref_id=_first(wallet, "refId"),
    )


def normalize_wallet_set_id(payload: Any) -> str:
    wallet_set = _first_object(payload, WALLET_SET_PATHS, ("id", "walletSetId"))
    if wallet_set is None:
        raise MalformedResponse("no wallet set id found in provider response", raw_details=payload)
    return str(_first(wallet_set, "id", "walletSetId"))


def normalize_wallet_list(payload: Any) -> List[NormalizedWallet]:
    for path in WALLET_LIST_PATHS:
        candidate = _dig(payload, path)
        if isinstance(candidate, list):
            return [normalize_wallet(item) for item in candidate]
    raise MalformedResponse("no wallet list found in provider response", raw_details=payload)


def normalize_transaction(payload: Any) -> NormalizedTransaction:
    txn = _first_object(payload, TRANSACTION_PATHS, ("id", "transactionId"))
    if txn is None:
        raise MalformedResponse("no transaction found in provider response", raw_details=payload)
    return NormalizedTransaction(
        id=str(_first(txn, "id", "transactionId")),
        state=_first(txn, "state", "status"),
        tx_hash=_first(txn, "txHash"),
    )


def _token_balance(entry: Any, raw: Any) -> TokenBalance:
    if not isinstance(entry, dict):
        raise MalformedResponse("balance entry is not an object", raw_details=raw)
    token = entry.get("token") if isinstance(entry.get("token"), dict) else {}
    symbol = _first(token, "symbol") or _first(entry, "symbol")
    amount = _first(entry, "amount", "balance")
    if symbol is None or amount is None:
        raise MalformedResponse("balance entry lacks symbol or amount", raw_details=raw)
    try:
        return TokenBalance(symbol=str(symbol), amount=Decimal(str(amount)))
    except InvalidOperation as exc:
        raise MalformedResponse(f"invalid balance amount {amount!r}", raw_details=raw) from exc


def normalize_balances(payload: Any) -> List[TokenBalance]:
    """
    Return the token balances in provider order.

    An empty list is a valid answer (a wallet with nothing on it), but a
    non-empty list at a later path takes precedence over an empty one.
    """
    found_empty = False
    for path in BALANCE_PATHS:
        candidate = _dig(payload, path)
        if not isinstance(candidate, list):
            continue
        if not candidate:
            found_empty = True
            continue
        return [_token_balance(entry, payload) for entry in candidate]
    if found_empty:
        return []
    raise MalformedResponse("no balance list found in provider response", raw_details=payload)


def transfer_status(provider_state: Optional[str]) -> TransferStatus:
    if not provider_state:
        return TransferStatus.PENDING
    return provider_transfer_status_map.get(provider_state.upper(), TransferStatus.PENDING)

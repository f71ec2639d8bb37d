from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from wallet_hub.config import EntityType


class WalletSetRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class WalletSetResponse(BaseModel):
    walletSetId: Optional[str] = None


class EntityWalletRequest(BaseModel):
    entityType: EntityType
    entityId: str
    description: Optional[str] = None


class AccountResponse(BaseModel):
    id: int
    entityType: str
    entityId: str
    walletId: str
    walletSetId: Optional[str] = None
    address: Optional[str] = None
    blockchain: Optional[str] = None
    currency: str
    status: str
    createdAt: Optional[str] = None


class FundRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    claimId: Optional[str] = None


class TransferRequest(BaseModel):
    fromWalletId: str
    toWalletId: str
    amount: Decimal = Field(..., gt=0)
    claimId: Optional[str] = None
    description: Optional[str] = None


class TransferResponse(BaseModel):
    id: int
    claimId: Optional[str] = None
    fromWalletId: str
    toWalletId: str
    amount: str
    currency: str
    providerTransferId: Optional[str] = None
    status: str
    errorMessage: Optional[str] = None
    createdAt: Optional[str] = None
    completedAt: Optional[str] = None
    errorDetails: Optional[Any] = None


class TokenBalanceResponse(BaseModel):
    symbol: str
    amount: str


class BalanceResponse(BaseModel):
    walletId: str
    balances: List[TokenBalanceResponse]
    degraded: bool = False


class PatientContactRequest(BaseModel):
    phone: Optional[str] = None
    email: Optional[str] = None


class ErrorResponse(BaseModel):
    detail: str
    kind: str
    details: Optional[Any] = None

from typing import List, Optional

from pydantic import BaseModel, Field

from wallet_hub.config import Settings


class WalletMetadata(BaseModel):
    name: Optional[str] = None
    refId: Optional[str] = None


class CreateWalletSetRequest(BaseModel):
    idempotencyKey: str
    entitySecretCiphertext: str
    name: str


class CreateWalletsRequest(BaseModel):
    idempotencyKey: str
    entitySecretCiphertext: str
    walletSetId: str
    accountType: str
    blockchains: List[str]
    count: int = 1
    metadata: List[WalletMetadata] = Field(default_factory=list)

    @classmethod
    def for_entity(
        cls,
        settings: Settings,
        idempotency_key: str,
        wallet_set_id: str,
        entity_type: str,
        entity_id: str,
        description: str,
    ) -> "CreateWalletsRequest":
        return cls(
            idempotencyKey=idempotency_key,
            entitySecretCiphertext=settings.custody_entity_secret_ciphertext,
            walletSetId=wallet_set_id,
            accountType=settings.account_type,
            blockchains=[settings.blockchain],
            count=1,
            metadata=[WalletMetadata(name=description, refId=f"{entity_type}:{entity_id}")],
        )


class CreateTransferRequest(BaseModel):
    idempotencyKey: str
    entitySecretCiphertext: str
    walletId: str
    destinationAddress: str
    amounts: List[str]
    tokenId: str
    feeLevel: str
    refId: Optional[str] = None

    @classmethod
    def from_funding(
        cls,
        settings: Settings,
        idempotency_key: str,
        source_wallet_id: str,
        destination_address: str,
        amount: str,
        memo: str,
    ) -> "CreateTransferRequest":
        return cls(
            idempotencyKey=idempotency_key,
            entitySecretCiphertext=settings.custody_entity_secret_ciphertext,
            walletId=source_wallet_id,
            destinationAddress=destination_address,
            amounts=[amount],
            tokenId=settings.token_id,
            feeLevel=settings.fee_level,
            refId=memo,
        )

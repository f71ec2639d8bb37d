from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, Numeric, String, text
from sqlalchemy.orm import validates
from sqlalchemy.sql import func

from wallet_hub.config import AccountStatus, TransferStatus
from wallet_hub.database import Base
from wallet_hub.exceptions import PreconditionFailed


class WalletAccount(Base):
    __tablename__ = "wallet_accounts"
    id = Column(Integer, primary_key=True)
    entity_type = Column(String, nullable=False)  # provider|insurer|patient|system
    entity_id = Column(String, nullable=False)
    wallet_id = Column(String, unique=True, nullable=False)
    wallet_set_id = Column(String, nullable=True)
    address = Column(String, nullable=True)
    blockchain = Column(String, nullable=True)
    currency = Column(String, nullable=False, default="USDC")
    status = Column(String, nullable=False, default=AccountStatus.ACTIVE.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    __table_args__ = (
        Index("ix_wallet_accounts_entity", "entity_type", "entity_id"),
        # At most one active account per entity key.
        Index(
            "uq_wallet_accounts_active_entity",
            "entity_type",
            "entity_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    @validates("wallet_id")
    def _freeze_wallet_id(self, key, value):
        if self.wallet_id is not None and value != self.wallet_id:
            raise PreconditionFailed("wallet_id is immutable once set")
        return value


class TransferRecord(Base):
    __tablename__ = "transfer_records"
    id = Column(Integer, primary_key=True)
    claim_id = Column(String, index=True, nullable=True)
    from_wallet_id = Column(String, nullable=False)
    to_wallet_id = Column(String, nullable=False)
    amount = Column(Numeric(18, 6), nullable=False)
    currency = Column(String, nullable=False, default="USDC")
    provider_transfer_id = Column(String, unique=True, index=True, nullable=True)
    status = Column(String, index=True, nullable=False, default=TransferStatus.PENDING.value)
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transfer_records_positive_amount"),
        CheckConstraint(
            "status != 'completed' OR (completed_at IS NOT NULL "
            "AND provider_transfer_id IS NOT NULL AND provider_transfer_id != '')",
            name="ck_transfer_records_completed_has_settlement",
        ),
    )

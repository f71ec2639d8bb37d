"""Account Directory: maps ``(entity_type, entity_id)`` onto custody wallets."""

from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wallet_hub.config import AccountStatus, EntityType, settings
from wallet_hub.exceptions import DuplicateEntity, NotFound
from wallet_hub.logging_config import get_logger
from wallet_hub.models import WalletAccount

logger = get_logger(__name__)


class AccountDirectory:
    """Storage-only view of wallet accounts.

    Only the active-account uniqueness rule is enforced here; which account
    should replace a mis-provisioned one is the caller's decision.
    """

    def __init__(self, db: Session):
        self.db = db

    def lookup(self, entity_type: EntityType | str, entity_id: str) -> Optional[WalletAccount]:
        return (
            self.db.query(WalletAccount)
            .filter(WalletAccount.entity_type == EntityType(entity_type).value)
            .filter(WalletAccount.entity_id == entity_id)
            .filter(WalletAccount.status == AccountStatus.ACTIVE.value)
            .first()
        )

    def get_by_wallet_id(self, wallet_id: str) -> Optional[WalletAccount]:
        return self.db.query(WalletAccount).filter(WalletAccount.wallet_id == wallet_id).first()

    def list(self, entity_type: EntityType | str | None = None) -> List[WalletAccount]:
        query = self.db.query(WalletAccount)
        if entity_type is not None:
            query = query.filter(WalletAccount.entity_type == EntityType(entity_type).value)
        return query.order_by(WalletAccount.created_at, WalletAccount.id).all()

    def create(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        wallet_id: str,
        wallet_set_id: str | None = None,
        address: str | None = None,
        blockchain: str | None = None,
    ) -> WalletAccount:
        entity_type = EntityType(entity_type)
        if self.lookup(entity_type, entity_id) is not None:
            raise DuplicateEntity(f"active account already exists for {entity_type.value}:{entity_id}")
        account = WalletAccount(
            entity_type=entity_type.value,
            entity_id=entity_id,
            wallet_id=wallet_id,
            wallet_set_id=wallet_set_id,
            address=address,
            blockchain=blockchain,
            currency=settings.currency,
            status=AccountStatus.ACTIVE.value,
        )
        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # A concurrent writer won the unique index.
            self.db.rollback()
            raise DuplicateEntity(
                f"active account already exists for {entity_type.value}:{entity_id}",
                raw_details=str(exc.orig),
            ) from exc
        self.db.refresh(account)
        logger.info(
            "Created wallet account entity=%s:%s wallet_id=%s account_id=%s",
            entity_type.value,
            entity_id,
            wallet_id,
            account.id,
        )
        return account

    def suspend(self, entity_type: EntityType | str, entity_id: str) -> WalletAccount:
        account = self.lookup(entity_type, entity_id)
        if account is None:
            raise NotFound(f"no active account for {EntityType(entity_type).value}:{entity_id}")
        account.status = AccountStatus.SUSPENDED.value
        self.db.add(account)
        self.db.commit()
        self.db.refresh(account)
        logger.warning(
            "Suspended wallet account entity=%s:%s wallet_id=%s",
            account.entity_type,
            account.entity_id,
            account.wallet_id,
        )
        return account

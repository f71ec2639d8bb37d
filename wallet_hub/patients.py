from typing import Optional

from sqlalchemy.orm import Session

from wallet_hub.clients.registry_client import PatientRegistryClient
from wallet_hub.config import EntityType
from wallet_hub.directory import AccountDirectory
from wallet_hub.exceptions import DuplicateEntity, NotFound, UnknownPatient
from wallet_hub.logging_config import get_logger
from wallet_hub.models import WalletAccount
from wallet_hub.provisioning import WalletProvisioning

logger = get_logger(__name__)


class PatientWalletResolver:
    """Guarantees at most one wallet per patient, created on demand."""

    def __init__(self, db: Session, provisioning: WalletProvisioning, registry: PatientRegistryClient):
        self.db = db
        self.directory = AccountDirectory(db)
        self.provisioning = provisioning
        self.registry = registry

    async def get_or_create(
        self,
        patient_id: str,
        create_if_not_exists: bool = True,
        timeout: Optional[float] = None,
    ) -> WalletAccount:
        existing = self.directory.lookup(EntityType.PATIENT, patient_id)
        if existing is not None:
            return existing
        if not create_if_not_exists:
            raise NotFound(f"patient wallet does not exist for {patient_id}")

        self.provisioning.client.ensure_configured()
        # Existence check only; registry names stay out of provider metadata.
        await self.registry.get_patient(patient_id)
        wallet_set_id = await self.provisioning.ensure_wallet_set(timeout=timeout)
        wallet = await self.provisioning.create_wallet(
            wallet_set_id,
            EntityType.PATIENT,
            patient_id,
            f"Patient wallet for {patient_id}",
            timeout=timeout,
        )
        try:
            self.directory.create(
                EntityType.PATIENT,
                patient_id,
                wallet.id,
                wallet_set_id=wallet_set_id,
                address=wallet.address,
                blockchain=wallet.blockchain,
            )
        except DuplicateEntity:
            # Lost a creation race; the winner's account is the patient's wallet.
            winner = self.directory.lookup(EntityType.PATIENT, patient_id)
            if winner is None:
                raise
            logger.warning(
                "Patient wallet race lost patient_id=%s orphaned_wallet_id=%s kept_wallet_id=%s",
                patient_id,
                wallet.id,
                winner.wallet_id,
            )
            return winner
        return self.directory.lookup(EntityType.PATIENT, patient_id)

    async def get_by_contact(
        self,
        phone: str | None = None,
        email: str | None = None,
        timeout: Optional[float] = None,
    ) -> WalletAccount:
        self.provisioning.client.ensure_configured()
        patient = None
        if phone:
            patient = await self.registry.find_by_phone(phone)
        if patient is None and email:
            patient = await self.registry.find_by_email(email)
        if patient is None:
            raise UnknownPatient("no patient found for the provided phone/email")
        return await self.get_or_create(patient.id, timeout=timeout)

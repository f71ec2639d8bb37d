from typing import Optional

import httpx
from pydantic import BaseModel

from wallet_hub.config import Settings, settings as default_settings
from wallet_hub.exceptions import UnknownPatient
from wallet_hub.logging_config import get_logger

logger = get_logger(__name__)


class RegistryPatient(BaseModel):
    id: str
    name: Optional[str] = None


class PatientRegistryClient:
    """Read-only client for the external patient registry."""

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings or default_settings
        self.client = client or httpx.AsyncClient(
            base_url=str(self.settings.registry_base_url),
            timeout=self.settings.request_timeout_seconds,
        )

    async def get_patient(self, patient_id: str) -> RegistryPatient:
        resp = await self._get(f"/patients/{patient_id}", description=f"id={patient_id}")
        return RegistryPatient.model_validate(resp.json())

    async def find_by_phone(self, phone: str) -> Optional[RegistryPatient]:
        return await self._search({"phone": phone})

    async def find_by_email(self, email: str) -> Optional[RegistryPatient]:
        return await self._search({"email": email})

    async def _search(self, params: dict) -> Optional[RegistryPatient]:
        resp = await self._get("/patients", params=params, description=str(params))
        matches = resp.json()
        if not matches:
            return None
        return RegistryPatient.model_validate(matches[0])

    async def _get(self, url: str, description: str, params: dict | None = None) -> httpx.Response:
        try:
            resp = await self.client.get(url, params=params)
        except httpx.RequestError as exc:
            logger.warning("Patient registry unreachable lookup=%s error=%s", description, exc)
            raise UnknownPatient(f"patient registry lookup failed: {exc}") from exc
        if resp.status_code == 200:
            return resp
        logger.info("Patient registry miss lookup=%s status=%s", description, resp.status_code)
        raise UnknownPatient(f"patient not found in registry ({description})", raw_details=resp.text)


registry_client = PatientRegistryClient()


def get_registry_client() -> PatientRegistryClient:
    return registry_client

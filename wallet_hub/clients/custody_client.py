from typing import Any, Optional

import httpx

from wallet_hub.config import Settings, settings as default_settings
from wallet_hub.contracts.contracts import CreateTransferRequest, CreateWalletSetRequest, CreateWalletsRequest
from wallet_hub.exceptions import MalformedResponse, ProviderError, ProviderTimeout, ServiceUnavailable
from wallet_hub.logging_config import get_logger

logger = get_logger(__name__)


class CustodyClient:
    """
    Thin async wrapper over the custody provider's REST API.

    Returns raw decoded JSON; shape handling lives in ``wallet_hub.normalizer``.
    No retries are attempted here: a failed or timed-out call surfaces to the
    caller, which can re-issue it with a fresh idempotency key.
    """

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        self.settings = settings or default_settings
        self.client = client or httpx.AsyncClient(
            base_url=str(self.settings.custody_base_url),
            timeout=self.settings.request_timeout_seconds,
        )

    def ensure_configured(self):
        if not self.settings.custody_configured:
            raise ServiceUnavailable("custody provider credentials are not configured")

    async def _request(
        self,
        method: str,
        url: str,
        json: dict | None = None,
        params: dict | None = None,
        timeout: Optional[float] = None,
    ) -> Any:
        self.ensure_configured()
        headers = {"Authorization": f"Bearer {self.settings.custody_api_key}"}
        try:
            response = await self.client.request(
                method,
                url,
                json=json,
                params=params,
                headers=headers,
                timeout=timeout if timeout is not None else self.settings.request_timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            logger.warning("Custody request timed out method=%s url=%s", method, url)
            raise ProviderTimeout(f"custody request timed out: {method} {url}") from exc
        except httpx.RequestError as exc:
            logger.warning("Custody request error method=%s url=%s error=%s", method, url, exc)
            raise ProviderError(f"custody request error: {exc}") from exc

        logger.info("Custody response method=%s url=%s status=%s", method, url, response.status_code)
        if response.status_code >= 400:
            raise ProviderError(
                f"custody provider returned {response.status_code} for {method} {url}",
                raw_details=_body(response),
            )
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponse("custody provider returned a non-JSON body", raw_details=response.text) from exc

    async def create_wallet_set(self, request: CreateWalletSetRequest, timeout: Optional[float] = None) -> Any:
        return await self._request("POST", "/v1/w3s/developer/walletSets", json=request.model_dump(), timeout=timeout)

    async def create_wallets(self, request: CreateWalletsRequest, timeout: Optional[float] = None) -> Any:
        return await self._request("POST", "/v1/w3s/developer/wallets", json=request.model_dump(), timeout=timeout)

    async def get_wallet(self, wallet_id: str, timeout: Optional[float] = None) -> Any:
        return await self._request("GET", f"/v1/w3s/wallets/{wallet_id}", timeout=timeout)

    async def list_wallets(self, wallet_set_id: str, timeout: Optional[float] = None) -> Any:
        return await self._request("GET", "/v1/w3s/wallets", params={"walletSetId": wallet_set_id}, timeout=timeout)

    async def get_wallets_with_balances(self, wallet_id: str, blockchain: str, timeout: Optional[float] = None) -> Any:
        params = {"walletId": wallet_id, "blockchain": blockchain}
        return await self._request("GET", "/v1/w3s/developer/wallets/balances", params=params, timeout=timeout)

    async def get_token_balances(self, wallet_id: str, timeout: Optional[float] = None) -> Any:
        return await self._request("GET", f"/v1/w3s/wallets/{wallet_id}/balances", timeout=timeout)

    async def create_transfer(self, request: CreateTransferRequest, timeout: Optional[float] = None) -> Any:
        return await self._request(
            "POST", "/v1/w3s/developer/transactions/transfer", json=request.model_dump(), timeout=timeout
        )

    async def get_transaction(self, transaction_id: str, timeout: Optional[float] = None) -> Any:
        return await self._request("GET", f"/v1/w3s/transactions/{transaction_id}", timeout=timeout)


def _body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


custody_client = CustodyClient()


def get_custody_client() -> CustodyClient:
    return custody_client

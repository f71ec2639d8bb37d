from typing import List, Optional

from pydantic import BaseModel

from wallet_hub.clients.custody_client import CustodyClient
from wallet_hub.config import Settings
from wallet_hub.exceptions import MalformedResponse, ProviderError
from wallet_hub.logging_config import get_logger
from wallet_hub.normalizer import TokenBalance, normalize_balances

logger = get_logger(__name__)


class BalanceSnapshot(BaseModel):
    wallet_id: str
    balances: List[TokenBalance] = []
    degraded: bool = False


class BalanceReader:
    """
    Live token balances for a wallet.

    Tries the combined wallet+balance query, then the token-balance query.
    When both fail the snapshot is empty: a wallet that cannot report yet is
    reported as holding nothing (``balance_empty_on_failure``).
    """

    def __init__(self, client: CustodyClient, settings: Settings):
        self.client = client
        self.settings = settings

    async def get_balance(self, wallet_id: str, timeout: Optional[float] = None) -> BalanceSnapshot:
        self.client.ensure_configured()
        try:
            payload = await self.client.get_wallets_with_balances(wallet_id, self.settings.blockchain, timeout=timeout)
            return BalanceSnapshot(wallet_id=wallet_id, balances=normalize_balances(payload))
        except (ProviderError, MalformedResponse) as exc:
            logger.warning("Combined balance query failed wallet_id=%s error=%s", wallet_id, exc.message)

        try:
            payload = await self.client.get_token_balances(wallet_id, timeout=timeout)
            return BalanceSnapshot(wallet_id=wallet_id, balances=normalize_balances(payload))
        except (ProviderError, MalformedResponse) as exc:
            if not self.settings.balance_empty_on_failure:
                raise
            # Degrade-to-empty: new wallets often cannot report balances yet.
            logger.warning(
                "Token balance query failed wallet_id=%s error=%s; reporting empty balance",
                wallet_id,
                exc.message,
            )
            return BalanceSnapshot(wallet_id=wallet_id, balances=[], degraded=True)

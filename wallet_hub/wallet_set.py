import threading
from typing import Optional

from wallet_hub.config import settings
from wallet_hub.logging_config import get_logger

logger = get_logger(__name__)


class WalletSetRegistry:
    """
    Process-wide holder of the current wallet set id.

    ``claim`` has first-writer-wins semantics: two requests that both found no
    wallet set may each provision one, but only the first to claim is kept and
    both continue with that id. The losing set stays orphaned on the provider.
    """

    def __init__(self, initial: Optional[str] = None):
        self._lock = threading.Lock()
        self._value = initial or None

    def get(self) -> Optional[str]:
        with self._lock:
            return self._value

    def set(self, wallet_set_id: str) -> None:
        with self._lock:
            self._value = wallet_set_id
        logger.info("Wallet set id set to %s", wallet_set_id)

    def claim(self, candidate: str) -> str:
        with self._lock:
            if self._value is None:
                self._value = candidate
                logger.info("Wallet set id claimed: %s", candidate)
                return candidate
            winner = self._value
        if winner != candidate:
            logger.warning("Discarding wallet set %s; %s was claimed first", candidate, winner)
        return winner


wallet_set_registry = WalletSetRegistry(settings.wallet_set_id)


def get_wallet_set_registry() -> WalletSetRegistry:
    return wallet_set_registry

from typing import Callable, Optional

from logger_config import setup_logger

logger = setup_logger()


class AccessControl:
    def __init__(self, keys_provider: Callable[[], str], separator: str = ";"):
        """
        Gate uploads on a shared-secret allow-list.

        Args:
            keys_provider: Returns the raw allow-list string. Called on every
                check, so a changed value applies without a restart
            separator: Delimiter between keys in the allow-list
        """
        self._keys_provider = keys_provider
        self._separator = separator

    def allowed_keys(self) -> list:
        """Get the current allow-list, skipping empty entries."""
        raw = self._keys_provider() or ""
        return [key for key in raw.split(self._separator) if key]

    def authorize(self, key: Optional[str]) -> bool:
        """Return True iff key exactly matches one allow-list entry."""
        if not key:
            return False

        authorized = key in self.allowed_keys()
        if not authorized:
            logger.warning("Rejected upload with unknown API key")
        return authorized

import random
from typing import Optional

from loguru import logger

from .config import mask_key
from .errors import NoAvailableKeyError
from .keys import KeyRecord, KeyRegistry


class KeySelector:
    """Picks one enabled key per request, uniformly at random."""

    def __init__(self, registry: KeyRegistry, rng: Optional[random.Random] = None):
        self.registry = registry
        self.rng = rng or random.Random()

    def pick(self) -> KeyRecord:
        """
        Draw an enabled key.

        Every enabled key has the same probability on every call; nothing
        about previous draws is remembered.

        Raises:
            NoAvailableKeyError: If no key is enabled
        """
        candidates = self.registry.enabled()
        if not candidates:
            logger.error(f"No enabled API keys among {len(self.registry)} registered")
            raise NoAvailableKeyError()

        selected = self.rng.choice(candidates)
        logger.debug(f"Selected API key {mask_key(selected.key)} from {len(candidates)} enabled")
        return selected

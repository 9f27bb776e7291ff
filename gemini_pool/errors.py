from .config import Constants


class KeyPoolError(Exception):
    """Base class for key pool failures."""


class DuplicateKeyError(KeyPoolError):
    """Raised when a secret is already registered in the pool."""

    def __init__(self, key: str):
        super().__init__("API key already exists")
        self.key = key


class NoAvailableKeyError(KeyPoolError):
    """Raised when no enabled key can serve a request."""

    def __init__(self, message: str = Constants.NO_KEY_MESSAGE):
        super().__init__(message)

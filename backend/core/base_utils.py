from cryptography.fernet import Fernet, InvalidToken

from core.config import SECRETS_KEY
from core.errors import ConfigurationError
from core.logger import Logger

logger = Logger(__name__)


class BaseUtils:
    """Fernet helpers for secrets stored in Mongo (Xero refresh tokens)."""

    def __init__(self, key: str = None):
        self.key = key or SECRETS_KEY

    def _get_fernet(self) -> Fernet:
        if not self.key:
            raise ConfigurationError("SECRETS_KEY env var not set")
        return Fernet(self.key)

    def encode_secret(self, value: str) -> str:
        return self._get_fernet().encrypt(value.encode()).decode()

    def decode_secret(self, token: str) -> str:
        try:
            return self._get_fernet().decrypt(token.encode()).decode()
        except InvalidToken:
            logger.warning("Stored secret could not be decrypted with the configured key")
            return ""

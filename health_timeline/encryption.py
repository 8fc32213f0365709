from cryptography.fernet import Fernet, InvalidToken

from health_timeline.config import get_settings


class EncryptionError(RuntimeError):
    """Raised when provider tokens cannot be encrypted or decrypted."""


def get_fernet() -> Fernet:
    settings = get_settings()
    if not settings.ENCRYPTION_KEY:
        raise EncryptionError("ENCRYPTION_KEY not configured")
    try:
        return Fernet(settings.ENCRYPTION_KEY.encode())
    except ValueError as e:
        raise EncryptionError(f"ENCRYPTION_KEY is not a valid Fernet key: {e}") from e


def encrypt_token(token: str) -> str:
    return get_fernet().encrypt(token.encode()).decode()


def decrypt_token(encrypted: str) -> str:
    try:
        return get_fernet().decrypt(encrypted.encode()).decode()
    except InvalidToken as e:
        raise EncryptionError("Stored token could not be decrypted") from e

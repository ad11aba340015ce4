from passlib.crypto.digest import pbkdf2_hmac
from passlib.utils import consteq
import hashlib
import logging
import os
import secrets

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 100_000
PBKDF2_KEY_BYTES = 32
SALT_BYTES = 16
TOKEN_BYTES = 32
TEMP_PASSWORD_DIGITS = 6


def get_secret(env_name: str, key_file: str) -> str:
    """Read a server secret from the environment, falling back to a local key file."""
    env_key = os.getenv(env_name)
    if env_key:
        return env_key

    if os.path.exists(key_file):
        try:
            with open(key_file, "r", encoding="utf-8") as f:
                value = f.read().strip()
            if value:
                return value
        except UnicodeDecodeError:
            logger.warning("Could not read %s, generating a new one", key_file)
            os.remove(key_file)

    new_key = secrets.token_urlsafe(32)
    with open(key_file, "w", encoding="utf-8") as f:
        f.write(new_key)
    if os.name != "nt":
        os.chmod(key_file, 0o600)
    logger.warning("Generated new %s in %s", env_name, key_file)
    return new_key


SESSION_SECRET = get_secret("SESSION_SECRET", ".session_secret")
PASSWORD_PEPPER = get_secret("PASSWORD_PEPPER", ".password_pepper")


def generate_salt() -> str:
    return secrets.token_hex(SALT_BYTES)


def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def generate_temp_password() -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(TEMP_PASSWORD_DIGITS))


def hash_password(password: str, salt: str, pepper: str) -> str:
    derived = pbkdf2_hmac(
        "sha256",
        (password + pepper).encode("utf-8"),
        salt.encode("utf-8"),
        PBKDF2_ITERATIONS,
        PBKDF2_KEY_BYTES,
    )
    return derived.hex()


def verify_password(password: str, salt: str, pepper: str, expected_hash: str) -> bool:
    return consteq(hash_password(password, salt, pepper), expected_hash)


def hash_token(token: str, secret: str) -> str:
    return hashlib.sha256((token + secret).encode("utf-8")).hexdigest()

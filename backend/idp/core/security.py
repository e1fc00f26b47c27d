"""Security utilities - password hashing, random credentials, PKCE"""

import base64
import hashlib
import hmac
import secrets

import bcrypt

from idp.config import settings

PKCE_METHODS = ("plain", "S256")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    return bcrypt.checkpw(
        plain_password.encode('utf-8'),
        hashed_password.encode('utf-8')
    )


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password

    Returns:
        str: Hashed password
    """
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt()
    ).decode('utf-8')


def generate_authorization_code() -> str:
    """Opaque 256-bit authorization code (hex)."""
    return secrets.token_hex(32)


def generate_opaque_token() -> str:
    """Opaque 256-bit bearer credential, used for access and refresh tokens."""
    return secrets.token_hex(32)


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def generate_client_id() -> str:
    return f"sso_{secrets.token_hex(16)}"


def generate_client_secret() -> str:
    return secrets.token_hex(32)


def hash_client_secret(secret: str) -> str:
    """
    Keyed MAC of a client secret.

    Only the MAC is persisted; the plaintext is shown once to the owner.
    """
    return hmac.new(
        settings.SECRET_KEY.encode("utf-8"),
        secret.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_client_secret(secret: str, secret_hash: str) -> bool:
    return hmac.compare_digest(hash_client_secret(secret).encode("utf-8"), secret_hash.encode("utf-8"))


def generate_csrf_token() -> str:
    """
    Generate CSRF token

    Returns:
        str: Random CSRF token
    """
    return secrets.token_urlsafe(32)


def generate_state() -> str:
    return secrets.token_urlsafe(16)


def s256_challenge(verifier: str) -> str:
    """base64url(sha256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_challenge(verifier: str, challenge: str, method: str) -> bool:
    """
    Check a PKCE code_verifier against the challenge bound to a code.

    Unknown methods never verify.
    """
    if method == "plain":
        return hmac.compare_digest(verifier.encode("utf-8"), challenge.encode("utf-8"))
    if method == "S256":
        try:
            computed = s256_challenge(verifier)
        except UnicodeEncodeError:
            return False
        return hmac.compare_digest(computed.encode("utf-8"), challenge.encode("utf-8"))
    return False

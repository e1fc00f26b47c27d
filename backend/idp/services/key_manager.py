"""RSA signing key management for OIDC identity tokens (RS256)."""

from __future__ import annotations

import logging
import os
import secrets
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt

logger = logging.getLogger(__name__)

ALGORITHM = "RS256"
PRIVATE_KEY_FILE = "private.pem"
PUBLIC_KEY_FILE = "public.pem"
KID_FILE = "kid.txt"


@dataclass(frozen=True)
class SigningKey:
    private_pem: str
    public_pem: str
    kid: str


def _expand_newlines(value: str) -> str:
    # PEM blobs in env vars commonly arrive with literal "\n" sequences
    return value.replace("\\n", "\n").strip() + "\n"


def generate_signing_key() -> SigningKey:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return SigningKey(private_pem=private_pem, public_pem=public_pem, kid=secrets.token_hex(16))


class KeyManager:
    """
    Loads or creates the single active signing key.

    Lookup order:
      1) RSA_PRIVATE_KEY / RSA_PUBLIC_KEY / RSA_KEY_ID (all three must be set)
      2) PEM files and key id under ``keys_dir``
      3) Generate a fresh 2048-bit keypair and persist it to ``keys_dir``

    The key is loaded lazily on first use and cached on the instance.
    """

    def __init__(
        self,
        keys_dir: str,
        env_private_key: str = "",
        env_public_key: str = "",
        env_key_id: str = "",
    ) -> None:
        self.keys_dir = Path(keys_dir)
        self._env_private_key = env_private_key
        self._env_public_key = env_public_key
        self._env_key_id = env_key_id
        self._key: Optional[SigningKey] = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "KeyManager":
        return cls(
            keys_dir=settings.get_keys_dir(),
            env_private_key=settings.RSA_PRIVATE_KEY,
            env_public_key=settings.RSA_PUBLIC_KEY,
            env_key_id=settings.RSA_KEY_ID,
        )

    @property
    def key(self) -> SigningKey:
        if self._key is None:
            with self._lock:
                if self._key is None:
                    self._key = self._load_or_create()
        return self._key

    @property
    def kid(self) -> str:
        return self.key.kid

    def _load_or_create(self) -> SigningKey:
        if self._env_private_key and self._env_public_key and self._env_key_id:
            logger.info("Using signing key from environment (kid=%s)", self._env_key_id)
            return SigningKey(
                private_pem=_expand_newlines(self._env_private_key),
                public_pem=_expand_newlines(self._env_public_key),
                kid=self._env_key_id.strip(),
            )

        private_path = self.keys_dir / PRIVATE_KEY_FILE
        public_path = self.keys_dir / PUBLIC_KEY_FILE
        kid_path = self.keys_dir / KID_FILE

        if private_path.exists() and public_path.exists() and kid_path.exists():
            key = SigningKey(
                private_pem=private_path.read_text(encoding="utf-8"),
                public_pem=public_path.read_text(encoding="utf-8"),
                kid=kid_path.read_text(encoding="utf-8").strip(),
            )
            logger.info("Loaded signing key from %s (kid=%s)", self.keys_dir, key.kid)
            return key

        logger.warning("No signing key found; generating a new RSA keypair in %s", self.keys_dir)
        key = generate_signing_key()
        self.keys_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(private_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(key.private_pem)
        public_path.write_text(key.public_pem, encoding="utf-8")
        kid_path.write_text(key.kid, encoding="utf-8")
        return key

    def jwks(self) -> Dict[str, Any]:
        """Public key set document with the single active key."""
        public_jwk = jwk.construct(self.key.public_pem, ALGORITHM).to_dict()
        public_jwk.update({"kid": self.key.kid, "use": "sig", "alg": ALGORITHM})
        return {"keys": [public_jwk]}

    def sign(self, claims: Dict[str, Any]) -> str:
        """Compact JWS over ``claims`` with the active key."""
        return jwt.encode(
            claims,
            self.key.private_pem,
            algorithm=ALGORITHM,
            headers={"kid": self.key.kid, "typ": "JWT"},
        )

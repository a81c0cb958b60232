"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Passport happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. password_salt -> PASSWORD_SALT).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode (DEBUG=true) generates the salt and the JWT key pair
      with a warning; production mode refuses to start without them.

Security notes:
  [S1] PASSWORD_SALT is fixed for the lifetime of the deployment. Every stored
       digest depends on it, so a missing salt in production is a hard startup
       failure instead of a silently regenerated value.

  [S2] JWT signing uses an asymmetric key pair (RS256 by default). The private
       key never leaves the process; the public key is enough to verify.

Layer rule: core/ is the kernel. This module may not import from api/,
admin/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("passport.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'passport.db'}"


def _generate_rsa_pair() -> tuple[str, str]:
    """Return a fresh (private_pem, public_pem) RSA-2048 pair."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = (
        key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("ascii")
    )
    return private_pem, public_pem


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Password derivation (PBKDF2)
    # ------------------------------------------------------------------

    password_iterations: int = 210_000
    # Derived key length in bits, as PBEKeySpec-style configs express it.
    password_key_length: int = 512
    # Any digest name accepted by hashlib.pbkdf2_hmac.
    password_algorithm: str = "sha512"
    # Empty string is the "not configured" sentinel; see validate_secrets().
    password_salt: str = ""

    password_generator_length: int = 12

    # ------------------------------------------------------------------
    # Signed assertions (JWT)
    # ------------------------------------------------------------------

    jwt_issuer: str = "https://passport.vepo.dev"
    jwt_algorithm: str = "RS256"
    jwt_private_key: str = ""
    jwt_public_key: str = ""
    jwt_private_key_path: str = ""
    jwt_public_key_path: str = ""

    # Privilege name that unlocks the administration endpoints.
    admin_role: str = "admin"

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    # JSON lists in the environment, e.g. ALLOWED_HOSTS='["passport.example.com"]'
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Mail (empty smtp_host = log notifications instead of sending)
    # ------------------------------------------------------------------

    base_url: str = "http://localhost:8080"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = "passport@localhost"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Resolve the password salt and JWT key material [S1][S2].

        Key files take precedence over empty inline values. In dev mode any
        missing material is generated with a warning; stored digests and
        issued tokens will not survive a restart. In production mode missing
        material aborts startup.
        """
        if self.password_generator_length < 4:
            raise ValueError("PASSWORD_GENERATOR_LENGTH must be at least 4.")

        if not self.password_salt:
            if not self.debug:
                raise ValueError(
                    "PASSWORD_SALT is required in production mode. "
                    "Set PASSWORD_SALT in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            self.password_salt = secrets.token_hex(16)
            logger.warning("WARNING: Using auto-generated PASSWORD_SALT. Stored passwords will not survive restarts.")
        if len(self.password_salt) < 16:
            raise ValueError("PASSWORD_SALT must be at least 16 characters.")

        if not self.jwt_private_key and self.jwt_private_key_path:
            self.jwt_private_key = Path(self.jwt_private_key_path).read_text(encoding="utf-8")
        if not self.jwt_public_key and self.jwt_public_key_path:
            self.jwt_public_key = Path(self.jwt_public_key_path).read_text(encoding="utf-8")

        if not self.jwt_private_key or not self.jwt_public_key:
            if not self.debug:
                raise ValueError(
                    "JWT_PRIVATE_KEY and JWT_PUBLIC_KEY (or their *_PATH variants) are required in production mode."
                )
            self.jwt_private_key, self.jwt_public_key = _generate_rsa_pair()
            logger.warning("WARNING: Using an ephemeral JWT key pair. Issued tokens will not survive restarts.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

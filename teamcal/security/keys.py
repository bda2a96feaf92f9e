"""
Two-level key hierarchy.

Every user gets a random 256-bit data key at registration. The key is stored
only as an envelope sealed under the system master key, and is unveiled on
demand for the duration of a single request.
"""

import logging
import os
import secrets
from typing import Mapping, Optional

from flask import current_app

from teamcal.errors import ConfigurationError, FormatError
from teamcal.security.crypto import KEY_LENGTH, open_sealed, seal

logger = logging.getLogger(__name__)

MASTER_KEY_ENV = "SYSTEM_MASTER_KEY"


class KeyVault:
    """
    Holds the process-wide master key.

    Constructed once at startup and handed to whatever needs to envelope or
    unveil user keys. The master key is never mutated after construction.
    """

    __slots__ = ("_master_key",)

    def __init__(self, master_key: bytes):
        if len(master_key) != KEY_LENGTH:
            raise ConfigurationError(f"Master key must be {KEY_LENGTH} bytes")
        self._master_key = bytes(master_key)

    def __repr__(self) -> str:
        return "KeyVault(<redacted>)"

    @classmethod
    def from_hex(cls, master_key_hex: str) -> "KeyVault":
        try:
            raw = bytes.fromhex(master_key_hex.strip())
        except ValueError as e:
            raise ConfigurationError(f"{MASTER_KEY_ENV} must be hex encoded") from e
        return cls(raw)

    @staticmethod
    def generate_user_key() -> bytes:
        """Fresh random key material for a new account."""
        return secrets.token_bytes(KEY_LENGTH)

    def envelope(self, raw_key: bytes) -> str:
        """
        Seal a user data key under the master key.

        The hex text of the key is what gets sealed, so stored envelopes open
        to 64 hex characters.
        """
        if len(raw_key) != KEY_LENGTH:
            raise ValueError(f"User key must be {KEY_LENGTH} bytes")
        return seal(raw_key.hex().encode("utf-8"), self._master_key)

    def unveil(self, envelope_blob: str) -> bytes:
        """
        Recover a user data key from its envelope.

        Raises:
            FormatError: Malformed envelope, or it does not hold a valid key.
            IntegrityError: The envelope was tampered with or sealed under a
                different master key.
        """
        plaintext = open_sealed(envelope_blob, self._master_key)
        try:
            raw = bytes.fromhex(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise FormatError("Key envelope does not contain a hex key") from e
        if len(raw) != KEY_LENGTH:
            raise FormatError("Key envelope holds a key of the wrong length")
        return raw


def load_key_vault(environ: Optional[Mapping[str, str]] = None) -> Optional[KeyVault]:
    """
    Build the vault from `SYSTEM_MASTER_KEY`.

    In production a missing or malformed key is fatal. Elsewhere the app still
    starts without one; anything that needs a key then fails with
    KeyUnavailableError.
    """
    environ = os.environ if environ is None else environ
    is_production = environ.get("APP_ENV", "development").lower() == "production"
    master_key_hex = environ.get(MASTER_KEY_ENV)

    if not master_key_hex:
        if is_production:
            raise ConfigurationError(f"{MASTER_KEY_ENV} is missing")
        logger.warning("%s is not set; private events and registration are disabled", MASTER_KEY_ENV)
        return None

    return KeyVault.from_hex(master_key_hex)


def current_key_vault() -> Optional[KeyVault]:
    """The vault the running Flask app was created with."""
    return current_app.extensions.get("key_vault")

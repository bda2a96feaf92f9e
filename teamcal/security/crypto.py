"""
Authenticated field encryption.

AES-256-GCM with a fresh 12-byte nonce per call. A sealed record is persisted
as a single string of three hex components:

    <ivHex>:<authTagHex>:<ciphertextHex>

The same codec envelopes user data keys under the master key and seals private
event payloads under a user's data key.
"""

import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from teamcal.errors import FormatError, IntegrityError

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
SEPARATOR = ":"


@dataclass(frozen=True)
class SealedRecord:
    nonce: bytes
    tag: bytes
    ciphertext: bytes

    def serialize(self) -> str:
        return SEPARATOR.join((self.nonce.hex(), self.tag.hex(), self.ciphertext.hex()))


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
        raise ValueError(f"Encryption key must be exactly {KEY_LENGTH} bytes")


def _decode_hex(component: str, name: str) -> bytes:
    try:
        return bytes.fromhex(component)
    except ValueError as e:
        raise FormatError(f"Sealed record {name} is not valid hex") from e


def parse_record(record: str) -> SealedRecord:
    """
    Split a persisted record into its components.

    Runs before any cryptographic work so structurally broken input is reported
    as a FormatError and never reaches the cipher.

    Raises:
        FormatError: wrong component count, bad hex, or wrong nonce/tag size.
    """
    if not isinstance(record, str):
        raise FormatError("Sealed record must be a string")

    parts = record.split(SEPARATOR)
    if len(parts) != 3:
        raise FormatError(f"Sealed record must have 3 components, got {len(parts)}")

    iv_hex, tag_hex, ciphertext_hex = parts
    if len(iv_hex) != NONCE_LENGTH * 2:
        raise FormatError("Sealed record nonce has the wrong length")
    if len(tag_hex) != TAG_LENGTH * 2:
        raise FormatError("Sealed record auth tag has the wrong length")

    return SealedRecord(
        nonce=_decode_hex(iv_hex, "nonce"),
        tag=_decode_hex(tag_hex, "auth tag"),
        ciphertext=_decode_hex(ciphertext_hex, "ciphertext"),
    )


def seal(plaintext: bytes, key: bytes) -> str:
    """
    Encrypt `plaintext` under `key` and return the persisted record string.

    Args:
        plaintext (bytes): Data to protect.
        key (bytes): 32-byte AES key.

    Returns:
        str: `<ivHex>:<authTagHex>:<ciphertextHex>`
    """
    _check_key(key)
    nonce = os.urandom(NONCE_LENGTH)
    # AESGCM appends the tag to the ciphertext
    sealed = AESGCM(bytes(key)).encrypt(nonce, plaintext, None)
    record = SealedRecord(nonce=nonce, tag=sealed[-TAG_LENGTH:], ciphertext=sealed[:-TAG_LENGTH])
    return record.serialize()


def open_sealed(record: str, key: bytes) -> bytes:
    """
    Verify and decrypt a record produced by `seal`.

    Raises:
        FormatError: The record is malformed.
        IntegrityError: The tag does not verify under `key`.
    """
    _check_key(key)
    parsed = parse_record(record)
    try:
        return AESGCM(bytes(key)).decrypt(parsed.nonce, parsed.ciphertext + parsed.tag, None)
    except InvalidTag as e:
        raise IntegrityError("Sealed record failed authentication") from e

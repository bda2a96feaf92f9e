"""
Sealing policy for private events.

Write side: a private event's title and description are sealed under the
owner's data key and the visible columns get a fixed decoy. Read side: only
the owner ever gets the real content back; everybody else sees the decoy and
never triggers a decryption.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from teamcal.errors import CryptoError, FormatError, KeyUnavailableError
from teamcal.security.crypto import open_sealed, seal
from teamcal.security.keys import KeyVault

logger = logging.getLogger(__name__)

PRIVATE_TITLE = "Private Event"
PRIVATE_DESCRIPTION = ""


@dataclass(frozen=True)
class SealedFields:
    """Column values to persist for an event's content."""

    title: str
    description: str
    encrypted_data: Optional[str]


class OwnerKeyRing:
    """
    Unveiled user keys for the lifetime of one request.

    A calendar view can hold many private events of the same owner; the key is
    unveiled once and discarded with the ring. Never keep a ring beyond the
    request that created it.
    """

    def __init__(self, store, vault: Optional[KeyVault]):
        self.store = store
        self.vault = vault
        self._keys: Dict[str, bytes] = {}

    def key_for(self, user_id: str) -> bytes:
        """
        Raises:
            KeyUnavailableError: no vault, unknown user, or no envelope.
            IntegrityError / FormatError: the envelope does not open.
        """
        if user_id in self._keys:
            return self._keys[user_id]

        if self.vault is None:
            raise KeyUnavailableError("Encryption is not configured on this server")

        user = self.store.get_user(user_id)
        if not user or not user.get("encrypted_private_key"):
            raise KeyUnavailableError("User key not found", {"user_id": user_id})

        key = self.vault.unveil(user["encrypted_private_key"])
        self._keys[user_id] = key
        return key


def encode_payload(title: str, description: Optional[str]) -> bytes:
    return json.dumps(
        {"title": title, "description": description or ""},
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def decode_payload(plaintext: bytes) -> Dict[str, str]:
    try:
        data = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise FormatError("Sealed event payload is not valid JSON") from e
    if not isinstance(data, dict) or not isinstance(data.get("title"), str):
        raise FormatError("Sealed event payload has the wrong shape")
    description = data.get("description") or ""
    if not isinstance(description, str):
        raise FormatError("Sealed event payload has the wrong shape")
    return {"title": data["title"], "description": description}


def seal_event_fields(store, vault: Optional[KeyVault], owner_id: str, title: str,
                      description: Optional[str], is_private: bool,
                      key_ring: Optional[OwnerKeyRing] = None) -> SealedFields:
    """
    Decide what gets written for an event's title and description.

    Public events pass through untouched. Private events are sealed under the
    owner's key; if that key cannot be obtained the write is refused rather
    than falling back to storing plaintext.

    Raises:
        KeyUnavailableError: The owner has no usable key envelope.
    """
    if not is_private:
        return SealedFields(title=title, description=description or "", encrypted_data=None)

    ring = key_ring or OwnerKeyRing(store, vault)
    try:
        key = ring.key_for(owner_id)
    except CryptoError as e:
        raise KeyUnavailableError("User key is corrupt", {"user_id": owner_id}) from e

    encrypted = seal(encode_payload(title, description), key)
    return SealedFields(title=PRIVATE_TITLE, description=PRIVATE_DESCRIPTION, encrypted_data=encrypted)


def read_private_fields(event: Dict[str, Any], key_ring: OwnerKeyRing) -> Dict[str, str]:
    """
    Strictly decrypt a private event's content with its owner's key.

    Used by write paths that must rebuild the full payload; errors propagate.
    """
    key = key_ring.key_for(event["user_id"])
    return decode_payload(open_sealed(event["encrypted_data"], key))


def reveal_event(store, vault: Optional[KeyVault], event: Dict[str, Any],
                 viewer_id: Optional[str], key_ring: Optional[OwnerKeyRing] = None) -> Dict[str, Any]:
    """
    Shape a fetched event row for `viewer_id`.

    The returned dict never carries `encrypted_data`. For the owner of a
    private event the real title and description are overlaid; a record that
    fails to open is logged and shown with the decoy instead, so one bad row
    cannot break a calendar view.
    """
    shown = {k: v for k, v in event.items() if k != "encrypted_data"}

    if not event.get("is_private"):
        return shown

    shown["title"] = PRIVATE_TITLE
    shown["description"] = PRIVATE_DESCRIPTION

    if viewer_id is None or viewer_id != event["user_id"] or not event.get("encrypted_data"):
        return shown

    ring = key_ring or OwnerKeyRing(store, vault)
    try:
        shown.update(read_private_fields(event, ring))
    except (CryptoError, KeyUnavailableError) as e:
        logger.warning("Failed to decrypt private event %s: %s", event.get("id"), type(e).__name__)
    return shown

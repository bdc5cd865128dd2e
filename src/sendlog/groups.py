"""Group identifiers for the send log.

Two generations of group exist:
- Legacy (v1) groups carry a random 16-byte id directly in the message.
- Modern (v2) groups carry a 32-byte master key; the 32-byte group id is
  derived from it with HKDF-SHA256, so every member computes the same id.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

GROUP_ID_V1_LENGTH = 16
GROUP_ID_V2_LENGTH = 32
GROUP_MASTER_KEY_LENGTH = 32

_GROUP_ID_INFO = b"sendlog-group-id-v2"


class InvalidGroupKeyError(ValueError):
    """Raised when a group master key cannot be used to derive a group id."""


class InvalidGroupIdError(ValueError):
    """Raised when stored bytes are not a valid group id."""


@dataclass(frozen=True)
class GroupId:
    """Base class for group identifiers."""

    id: bytes

    def serialize(self) -> bytes:
        return self.id

    def to_base64(self) -> str:
        return base64.b64encode(self.id).decode("ascii")

    @staticmethod
    def v1(group_id: bytes) -> GroupIdV1:
        """Wrap a legacy group id, checking its length."""
        if len(group_id) != GROUP_ID_V1_LENGTH:
            raise InvalidGroupIdError(f"Invalid legacy group id length: {len(group_id)}")
        return GroupIdV1(group_id)

    @staticmethod
    def unknown_version(group_id: bytes) -> GroupId:
        """Pick the group id generation from the raw id length."""
        if len(group_id) == GROUP_ID_V1_LENGTH:
            return GroupIdV1(group_id)
        if len(group_id) == GROUP_ID_V2_LENGTH:
            return GroupIdV2(group_id)
        raise InvalidGroupIdError(f"Invalid group id length: {len(group_id)}")


@dataclass(frozen=True)
class GroupIdV1(GroupId):
    """Legacy group id."""


@dataclass(frozen=True)
class GroupIdV2(GroupId):
    """Group id derived from a group master key."""


def derive_group_id_v2(master_key: bytes) -> GroupIdV2:
    """
    Derive the group id for a modern group from its master key.

    Args:
        master_key: 32-byte group master key

    Returns:
        GroupIdV2 wrapping the 32-byte derived id

    Raises:
        InvalidGroupKeyError: If the key has the wrong length
    """
    if len(master_key) != GROUP_MASTER_KEY_LENGTH:
        raise InvalidGroupKeyError(
            f"Group master key must be {GROUP_MASTER_KEY_LENGTH} bytes, got {len(master_key)}"
        )

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=GROUP_ID_V2_LENGTH,
        salt=None,
        info=_GROUP_ID_INFO,
    )
    return GroupIdV2(hkdf.derive(master_key))

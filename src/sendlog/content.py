"""Sent message content and its wire codec.

The send log stores the exact bytes that were encrypted and sent, so that a
recipient who failed to decrypt a message can ask for it again. Content is
modelled with pydantic and serialized as JSON; byte fields travel as base64.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from .groups import GroupId, InvalidGroupIdError, InvalidGroupKeyError, derive_group_id_v2

logger = logging.getLogger(__name__)


class ContentDecodeError(ValueError):
    """Raised when stored bytes cannot be decoded into Content."""


class _Message(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )


class GroupContext(_Message):
    """Legacy group context: the group id travels in the clear."""

    id: bytes
    type: str | None = None
    name: str | None = None


class GroupContextV2(_Message):
    """Modern group context: only the master key travels."""

    master_key: bytes
    revision: int = 0
    group_change: bytes | None = None


class DataMessage(_Message):
    body: str | None = None
    timestamp: int | None = None
    group: GroupContext | None = None
    group_v2: GroupContextV2 | None = None
    expire_timer: int | None = None
    profile_key: bytes | None = None
    is_view_once: bool = False


class Content(_Message):
    """Top-level envelope content. At most one variant is normally set."""

    data_message: DataMessage | None = None
    sync_message: dict[str, Any] | None = None
    typing_message: dict[str, Any] | None = None
    receipt_message: dict[str, Any] | None = None
    sender_key_distribution_message: bytes | None = None
    decryption_error_message: bytes | None = None


def encode_content(content: Content) -> bytes:
    """Serialize content to the bytes stored in the send log."""
    return content.model_dump_json(exclude_none=True).encode("utf-8")


def decode_content(data: bytes) -> Content:
    """
    Decode bytes from the send log back into Content.

    Raises:
        ContentDecodeError: If the bytes are not a valid Content payload
    """
    try:
        return Content.model_validate_json(data)
    except ValidationError as e:
        raise ContentDecodeError(f"Invalid content payload: {e.error_count()} error(s)") from e


def extract_group_id(content: Content) -> GroupId | None:
    """Return the group a payload was sent to, or None for direct content.

    Only data messages are group-addressed. A legacy group context yields its
    id as-is; a modern context yields the id derived from its master key. An
    unusable legacy id or master key is logged and treated as "no group".
    """
    data_message = content.data_message
    if data_message is None:
        return None

    try:
        if data_message.group is not None:
            return GroupId.v1(data_message.group.id)
        if data_message.group_v2 is not None:
            return derive_group_id_v2(data_message.group_v2.master_key)
    except (InvalidGroupIdError, InvalidGroupKeyError):
        logger.warning("Failed to parse group id from content")
        return None

    return None

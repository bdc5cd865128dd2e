"""Domain types shared by the send log store and its callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum

from .content import Content
from .groups import GroupId

# Content id reported to callers that only understand integer ids
NOT_RECORDED = -1


class ContentHint(IntEnum):
    """How a recipient may treat a message it failed to decrypt."""

    DEFAULT = 0
    """No resend possible; the recipient shows an error."""

    RESENDABLE = 1
    """The sender can resend this content on request."""

    IMPLICIT = 2
    """Nothing user-visible; failures are ignored silently."""

    @classmethod
    def from_type(cls, value: int) -> ContentHint:
        """Decode a stored integer, falling back to DEFAULT for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.DEFAULT

    @property
    def type(self) -> int:
        return int(self.value)


@dataclass(frozen=True)
class RecipientId:
    """Local database id of a recipient."""

    id: int


@dataclass(frozen=True)
class ServiceAddress:
    """Network address of a recipient as seen by the send pipeline."""

    service_id: str
    number: str | None = None

    def identifier(self) -> str:
        return self.service_id or self.number or ""


@dataclass
class SendSuccess:
    """Details of a delivery that the server accepted."""

    devices: list[int] = field(default_factory=list)
    content: Content | None = None
    unidentified: bool = False
    needs_sync: bool = False
    duration_ms: int = 0


@dataclass
class SendResult:
    """Outcome of sending one logical message to one address."""

    address: ServiceAddress
    success: SendSuccess | None = None
    failure: str | None = None

    @property
    def is_success(self) -> bool:
        return self.success is not None

    @classmethod
    def succeeded(
        cls,
        address: ServiceAddress,
        devices: list[int],
        content: Content | None,
        *,
        unidentified: bool = False,
        needs_sync: bool = False,
        duration_ms: int = 0,
    ) -> SendResult:
        return cls(
            address=address,
            success=SendSuccess(
                devices=list(devices),
                content=content,
                unidentified=unidentified,
                needs_sync=needs_sync,
                duration_ms=duration_ms,
            ),
        )

    @classmethod
    def failed(cls, address: ServiceAddress, reason: str) -> SendResult:
        return cls(address=address, failure=reason)


@dataclass(frozen=True)
class RecipientDevices:
    recipient_id: RecipientId
    device_ids: tuple[int, ...]


@dataclass(frozen=True)
class SendLogEntry:
    """A logged payload that can be resent to a recipient."""

    group_id: GroupId | None
    content: Content
    content_hint: ContentHint


class RecordStatus(Enum):
    RECORDED = "recorded"
    NOTHING_TO_RECORD = "nothing_to_record"
    STORAGE_FAILURE = "storage_failure"


@dataclass(frozen=True)
class RecordResult:
    """Result of logging a send.

    Truthy only when content was written; `content_id` is then the id to pass
    to later appends for the same logical message.
    """

    status: RecordStatus
    content_id: int | None = None

    def __bool__(self) -> bool:
        return self.status is RecordStatus.RECORDED

    @property
    def content_id_or_sentinel(self) -> int:
        return self.content_id if self.content_id is not None else NOT_RECORDED

    @classmethod
    def recorded(cls, content_id: int) -> RecordResult:
        return cls(RecordStatus.RECORDED, content_id)

    @classmethod
    def nothing_to_record(cls) -> RecordResult:
        return cls(RecordStatus.NOTHING_TO_RECORD)

    @classmethod
    def storage_failure(cls) -> RecordResult:
        return cls(RecordStatus.STORAGE_FAILURE)

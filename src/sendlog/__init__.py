"""sendlog - Resend log for end-to-end encrypted messaging.

Usage:
    from sendlog import ContentHint, InMemoryRecipientResolver, SendLogOptions, SendLogStore

    store = SendLogStore(InMemoryRecipientResolver(), SendLogOptions(path="sendlog.db"))

    # After a send completes
    result = store.insert_if_possible(timestamp, send_results, ContentHint.RESENDABLE)

    # When a recipient asks for a resend
    entries = store.find_messages(recipient_id, device_id, timestamp)

    store.close()
"""

from sendlog._version import __version__
from sendlog.content import Content, DataMessage, GroupContext, GroupContextV2
from sendlog.groups import GroupId, GroupIdV1, GroupIdV2, InvalidGroupKeyError
from sendlog.models import (
    NOT_RECORDED,
    ContentHint,
    RecipientId,
    RecordResult,
    RecordStatus,
    SendLogEntry,
    SendResult,
    ServiceAddress,
)
from sendlog.options import SendLogConfigError, SendLogOptions
from sendlog.recipients import InMemoryRecipientResolver, RecipientResolver
from sendlog.store import SendLogClosedError, SendLogStore

__all__ = [
    "__version__",
    "Content",
    "ContentHint",
    "DataMessage",
    "GroupContext",
    "GroupContextV2",
    "GroupId",
    "GroupIdV1",
    "GroupIdV2",
    "InMemoryRecipientResolver",
    "InvalidGroupKeyError",
    "NOT_RECORDED",
    "RecipientId",
    "RecipientResolver",
    "RecordResult",
    "RecordStatus",
    "SendLogClosedError",
    "SendLogConfigError",
    "SendLogEntry",
    "SendLogOptions",
    "SendLogStore",
    "SendResult",
    "ServiceAddress",
]

"""CLI for send log administration.

Operates directly on a send log database file:
- init: create the tables
- stats: row counts and timestamp range
- prune: run the expiry sweep once
- lookup: show what would be resent to a recipient device

The database path comes from --db, or SENDLOG_DB when omitted.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Annotated

import cyclopts

from .models import RecipientId
from .options import SendLogConfigError, SendLogOptions
from .recipients import InMemoryRecipientResolver
from .store import SendLogStore

app = cyclopts.App(
    name="sendlog",
    help="Resend log for end-to-end encrypted messaging",
)


def print_json(data):
    """Pretty print JSON data."""
    print(json.dumps(data, indent=2, default=str))


def open_store(db: str | None, retention_hours: float | None = None) -> SendLogStore:
    """Open the store without a background job, or exit with an error."""
    try:
        options = SendLogOptions(
            path=Path(db) if db else None,
            retention_hours=retention_hours,
            autostart_cleanup=False,
        )
    except SendLogConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)
    return SendLogStore(InMemoryRecipientResolver(), options)


@app.meta.default
def main(
    *tokens: Annotated[str, cyclopts.Parameter(show=False, allow_leading_hyphen=True)],
    verbose: bool = False,
):
    """Global options.

    --verbose: Log debug output to stderr
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    app(tokens)


@app.command
def init(*, db: str | None = None):
    """Create the send log tables.

    --db: Database file (default: $SENDLOG_DB)
    """
    with open_store(db) as store:
        stats = store.stats()
    print(f"Send log ready at {store.options.resolved_path} (schema v{stats['schema_version']})")


@app.command
def stats(*, db: str | None = None):
    """Show row counts and the timestamp range of logged content."""
    with open_store(db) as store:
        print_json(store.stats())


@app.command
def prune(*, db: str | None = None, retention_hours: float | None = None, dry_run: bool = False):
    """Delete content older than the retention window.

    --retention-hours: Override the retention window
    --dry-run: Show what would be deleted without making changes
    """
    from . import jobs

    with open_store(db, retention_hours) as store:
        result = jobs.process_ttl(store, dry_run=dry_run)

    if dry_run:
        print(f"Would delete {result} expired content rows")
    else:
        print(f"Deleted {result} expired content rows")


@app.command
def lookup(
    recipient_id: int,
    device_id: int,
    timestamp: int,
    *,
    db: str | None = None,
    sender_key: bool = False,
):
    """Show logged content for a recipient device and send timestamp.

    --sender-key: Only show group content
    """
    with open_store(db) as store:
        entries = store.find_messages(RecipientId(recipient_id), device_id, timestamp, sender_key)

    print_json(
        [
            {
                "group_id": entry.group_id.to_base64() if entry.group_id else None,
                "content_hint": entry.content_hint.name,
                "content": entry.content.model_dump(mode="json", exclude_none=True),
            }
            for entry in entries
        ]
    )


if __name__ == "__main__":
    app.meta()

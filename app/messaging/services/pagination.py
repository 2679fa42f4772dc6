"""Opaque keyset cursors.

A cursor wraps the (timestamp, id) of the last row a client received. Pages
are anchored on that boundary instead of an offset, so rows inserted while a
client is paging never shift a page. The id breaks ties between rows sharing
a timestamp.
"""

import base64
import binascii
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from app.core.exceptions import BadRequestError

_SEPARATOR = "|"


def encode_cursor(boundary: datetime, item_id: UUID) -> str:
    raw = f"{boundary.isoformat()}{_SEPARATOR}{item_id}"
    return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")


def decode_cursor(cursor: str) -> tuple[datetime, UUID]:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        raw = base64.urlsafe_b64decode(padded.encode()).decode()
        stamp, sep, item_id = raw.partition(_SEPARATOR)
        if not sep:
            raise ValueError("missing separator")
        boundary = datetime.fromisoformat(stamp)
        parsed_id = UUID(item_id)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise BadRequestError("Invalid pagination cursor", field="cursor") from exc

    if boundary.tzinfo is not None:
        boundary = boundary.astimezone(UTC).replace(tzinfo=None)
    return boundary, parsed_id


def before(
    stamp_column: Any, id_column: Any, boundary: datetime, item_id: UUID
) -> ColumnElement[bool]:
    """Rows strictly earlier than the boundary in (timestamp, id) order."""
    return or_(
        stamp_column < boundary,
        and_(stamp_column == boundary, id_column < item_id),
    )


def after(
    stamp_column: Any, id_column: Any, boundary: datetime, item_id: UUID
) -> ColumnElement[bool]:
    """Rows strictly later than the boundary in (timestamp, id) order."""
    return or_(
        stamp_column > boundary,
        and_(stamp_column == boundary, id_column > item_id),
    )

import base64
import uuid
from datetime import UTC, datetime, timedelta, timezone

import pytest

from app.core.exceptions import BadRequestError
from app.messaging.services.pagination import decode_cursor, encode_cursor


def test_cursor_is_opaque_and_decodes_to_boundary():
    boundary = datetime(2026, 3, 1, 12, 30, 15, 123456)
    item_id = uuid.uuid4()

    cursor = encode_cursor(boundary, item_id)

    assert str(item_id) not in cursor
    assert "=" not in cursor
    assert decode_cursor(cursor) == (boundary, item_id)


def test_aware_boundary_is_normalized_to_naive_utc():
    item_id = uuid.uuid4()
    raw = f"2026-03-01T14:00:00+02:00|{item_id}"
    cursor = base64.urlsafe_b64encode(raw.encode()).decode()

    boundary, decoded_id = decode_cursor(cursor)

    assert boundary == datetime(2026, 3, 1, 12, 0, 0)
    assert boundary.tzinfo is None
    assert decoded_id == item_id


def test_utc_offset_zero_boundary():
    boundary = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    item_id = uuid.uuid4()
    cursor = encode_cursor(boundary.astimezone(timezone(timedelta(hours=-5))), item_id)

    assert decode_cursor(cursor)[0] == datetime(2026, 3, 1, 12, 0)


@pytest.mark.parametrize(
    "cursor",
    [
        "not-a-cursor!!",
        base64.urlsafe_b64encode(b"2026-03-01T12:00:00").decode(),
        base64.urlsafe_b64encode(b"yesterday|" + str(uuid.uuid4()).encode()).decode(),
        base64.urlsafe_b64encode(b"2026-03-01T12:00:00|not-a-uuid").decode(),
        base64.urlsafe_b64encode(b"\xff\xfe").decode(),
    ],
)
def test_malformed_cursor_is_bad_request(cursor):
    with pytest.raises(BadRequestError) as exc_info:
        decode_cursor(cursor)

    assert exc_info.value.status_code == 400
    assert exc_info.value.details == {"field": "cursor"}

"""
Opaque keyset-pagination cursor.

A cursor carries exactly one chronological position — the (created_at,
post_id) of the last item a page emitted — serialised as compact JSON
``{"t": <ISO-8601>, "id": <hex id>}`` and encoded as unpadded URL-safe
base64. The codec knows nothing about ranking.
"""
import base64
import binascii
import json
import re
from datetime import datetime
from typing import NamedTuple, Optional

# Store ids are uuid4().hex
_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


class Cursor(NamedTuple):
    ts: datetime
    id: str


def is_valid_id(value: object) -> bool:
    return isinstance(value, str) and _ID_PATTERN.match(value) is not None


def encode_cursor(ts: datetime, post_id: str) -> str:
    payload = json.dumps({"t": ts.isoformat(), "id": post_id}, separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(token: Optional[str]) -> Optional[Cursor]:
    """
    Reverse ``encode_cursor``. Returns None for anything encode_cursor could
    not have produced; never raises.
    """
    if not token or not isinstance(token, str):
        return None
    try:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeError, binascii.Error):
        return None

    if not isinstance(data, dict) or set(data) != {"t", "id"}:
        return None
    t, post_id = data["t"], data["id"]
    if not isinstance(t, str) or not is_valid_id(post_id):
        return None
    try:
        ts = datetime.fromisoformat(t)
    except ValueError:
        return None

    # Reject tokens that decode but are not in canonical form
    if encode_cursor(ts, post_id) != token:
        return None
    return Cursor(ts=ts, id=post_id)

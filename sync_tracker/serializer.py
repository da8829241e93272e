"""Upload serializer: JSON serialization with optional deflate compression."""

import json
import zlib

CONTENT_ENCODING = "deflate"


def serialize_changes(changes: list[dict], compress: bool = False) -> bytes:
    """Serialize a list of change dicts to an upload request body.

    The body is ``{"changes": [...]}`` as UTF-8 JSON. When *compress* is True
    it is zlib-compressed and must be sent with
    ``Content-Encoding: deflate``.
    """
    payload = json.dumps({"changes": changes}, separators=(",", ":")).encode("utf-8")

    if compress:
        return zlib.compress(payload)

    return payload


def deserialize_changes(data: bytes, content_encoding: str | None = None) -> list[dict]:
    """Deserialize a body produced by *serialize_changes* back to a list of dicts."""
    if content_encoding == CONTENT_ENCODING:
        data = zlib.decompress(data)

    body = json.loads(data)
    if not isinstance(body, dict) or not isinstance(body.get("changes"), list):
        raise ValueError("Upload body must be an object with a 'changes' list")
    return body["changes"]

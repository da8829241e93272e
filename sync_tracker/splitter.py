"""Upload splitter: splits pending changes to fit the backend's body limit."""

import logging

from sync_tracker.serializer import serialize_changes

logger = logging.getLogger(__name__)

# Default request body limit of the sync backend
MAX_UPLOAD_BYTES = 1024 * 1024


def split_changes(
    changes: list[dict],
    max_bytes: int = MAX_UPLOAD_BYTES,
    compress: bool = False,
) -> list[list[dict]]:
    """Split a list of change dicts into groups whose bodies fit in *max_bytes*.

    Uses a recursive binary-split approach: serialize the full list, and if it
    exceeds *max_bytes*, split it in half and recurse on each half. Order is
    preserved across the returned groups.

    A single change that already exceeds the limit is returned on its own
    with a warning; the backend decides whether to accept it.
    """
    if not changes:
        return []

    data = serialize_changes(changes, compress)

    if len(data) <= max_bytes:
        return [changes]

    if len(changes) == 1:
        logger.warning(
            "Single change exceeds upload limit (%d bytes > %d). "
            "Cannot split further; uploading oversized request.",
            len(data),
            max_bytes,
        )
        return [changes]

    mid = len(changes) // 2
    left = changes[:mid]
    right = changes[mid:]

    return split_changes(left, max_bytes, compress) + split_changes(right, max_bytes, compress)

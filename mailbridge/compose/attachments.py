"""Staging of local files as draft attachments."""

import logging
import mimetypes
from pathlib import Path
from typing import Any

from mailbridge.store.models import AttachmentRef, AttachmentResult

logger = logging.getLogger(__name__)


def stage_attachments(paths: Any) -> tuple[list[AttachmentRef], AttachmentResult]:
    """Turn file paths into attachment references.

    A path that does not name an existing regular file, or cannot be turned
    into a file URL, is recorded in ``failed``; staging carries on with the
    rest. Anything that is not a list stages nothing.
    """
    refs: list[AttachmentRef] = []
    result = AttachmentResult()
    if not isinstance(paths, list):
        return refs, result

    for raw in paths:
        try:
            path = Path(raw).expanduser()
            if not path.is_file():
                result.failed.append(str(raw))
                continue
            content_type, _ = mimetypes.guess_type(path.name)
            refs.append(AttachmentRef(
                url=path.resolve().as_uri(),
                name=path.name,
                content_type=content_type or "application/octet-stream",
            ))
            result.added += 1
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Could not stage attachment %r: %s", raw, exc)
            result.failed.append(str(raw))
    return refs, result

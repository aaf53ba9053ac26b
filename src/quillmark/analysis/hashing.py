"""Content hashing shared by the cache and the scheduler."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

from .models import AnalysisOptions

__all__ = ["content_hash"]


def content_hash(text: str, options: AnalysisOptions | Mapping[str, Any] | None = None) -> str:
    """Return the SHA-256 hex digest identifying ``text`` analyzed with ``options``.

    The payload is serialized canonically (sorted keys, compact separators) so
    equal inputs always hash equally regardless of mapping order.
    """

    resolved = AnalysisOptions.from_value(options)
    payload = json.dumps(
        {"content": text, "options": resolved.to_dict()},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()

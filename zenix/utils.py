"""Utility helpers for the ZeniX core."""

from __future__ import annotations

import json
import re
import unicodedata
from typing import Any, Mapping
from urllib.parse import parse_qsl


def slugify(value: str) -> str:
    """Return a URL-friendly slug."""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value)
    value = value.strip("-")
    value = re.sub(r"-+", "-", value)
    return value.lower()


def stable_serialize(params: Mapping[str, Any] | None) -> str:
    """Serialise parameters so that field order never changes the output."""

    if not params:
        return ""
    cleaned = {str(key): value for key, value in params.items() if value is not None}
    if not cleaned:
        return ""
    return json.dumps(cleaned, sort_keys=True, separators=(",", ":"), default=str)


def build_cache_key(identity: str, params: Mapping[str, Any] | None = None) -> str:
    """Combine an endpoint identity with its serialised parameters."""

    serialized = stable_serialize(params)
    if not serialized:
        return identity
    return f"{identity}-{serialized}"


def split_endpoint(
    endpoint: str, params: Mapping[str, Any] | None = None
) -> tuple[str, dict[str, Any]]:
    """Split ``path?query`` into a clean path and merged parameters.

    Values embedded in the query string win over explicitly supplied ones.
    """

    path, _, query = endpoint.partition("?")
    merged: dict[str, Any] = dict(params or {})
    if query:
        merged.update(parse_qsl(query, keep_blank_values=True))
    return path.strip().strip("/"), merged

"""Helpers for turning model identifiers into branch and directory names."""

from __future__ import annotations

import re
from typing import Iterable, Pattern

_UNSAFE_SEPARATORS: Pattern[str] = re.compile(r"[/:]")


def sanitize_ref_component(value: str) -> str:
    """Replace path separators in ``value`` so it can name a branch and a directory.

    ``openrouter/openai/gpt-5`` becomes ``openrouter-openai-gpt-5``.
    """
    return _UNSAFE_SEPARATORS.sub("-", value)


def find_collisions(values: Iterable[str]) -> dict[str, list[str]]:
    """Return sanitized names that more than one distinct input maps to."""
    seen: dict[str, list[str]] = {}
    for value in values:
        bucket = seen.setdefault(sanitize_ref_component(value), [])
        if value not in bucket:
            bucket.append(value)
    return {name: sources for name, sources in seen.items() if len(sources) > 1}

"""Resolve free-text filter names to captured filter indices.

Matching is deterministic: exact name equality first, then the first entry
(in capture order) whose name contains the cleaned text or is contained by
it. There is no similarity scoring.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
import re

from core.models import FilterEntry

_PERCENT_SUFFIX = re.compile(r"\s*\d+%\Z")


def clean_filter_name(text: str) -> str:
    """Strip a trailing percentage such as " 100%" and surrounding space."""
    return _PERCENT_SUFFIX.sub("", text.strip()).strip()


def resolve_filter_index(entries: Sequence[FilterEntry], text: str) -> int | None:
    """Return the index of the entry best matching `text`, or None."""
    name = clean_filter_name(text)
    if not name:
        return None

    for entry in entries:
        if entry.name == name:
            return entry.index

    for entry in entries:
        # An empty captured name would contain-match every query.
        if not entry.name:
            continue
        if name in entry.name or entry.name in name:
            return entry.index

    return None


class FilterIndexResolver:
    """Resolve names against whatever entry list the provider currently holds.

    The provider is read on every call, so a capture reload or mode switch is
    picked up without rebuilding the resolver.
    """

    def __init__(self, entries_provider: Callable[[], Sequence[FilterEntry]]) -> None:
        self._entries = entries_provider

    def resolve(self, text: str) -> int | None:
        return resolve_filter_index(self._entries(), text)

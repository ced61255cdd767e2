"""
highlight.py - File content retrieval and match highlighting.

For one Drive file this module:
  1. retrieves raw bytes, trying each retrieval strategy in order
     (export as document, then raw media) until one yields data
  2. extracts plain text for the resolved MIME type
  3. sanitizes the text (tags, a few entities, mis-encoded and non-ASCII
     characters)
  4. wraps every case-insensitive occurrence of the search term in a
     marker ``<span class='highlight' id='{searchId}-{n}'>``

Marker numbers continue from a caller-supplied starting count so that all
files of one search share a single flat, increasing sequence of ids.

Retrieval and extraction problems never fail the search; the file just
ends up with ``NO_CONTENT`` and an empty range.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .constants import (
    HIGHLIGHT_CLASS,
    MIME_EXPORT_TYPES,
    NO_CONTENT,
    NON_TEXT_MIME_MARKERS,
    PENDING_CONTENT,
)
from .drive_client import StorageProvider
from .errors import ProviderError
from .text_extract import extract_text

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sanitizing
# ---------------------------------------------------------------------------

_MARKUP_RE = re.compile(r"<[^>]*(?:>|$)|&nbsp;|&zwnj;|&raquo;|&laquo;|&gt;")
_BAD_CHAR_RE = re.compile(
    "Â&nbsp;|â¢&#160;|â¢&#160|â¢|â;|âs|â|Â|[^\x00-\x7F]"
)


def _sanitize_once(text: str) -> str:
    return _BAD_CHAR_RE.sub("", _MARKUP_RE.sub("", text))


def sanitize(text: str) -> str:
    """Strip markup and non-ASCII noise.

    Runs to a fixed point: removing one token can join its neighbours into
    a new one (``&nb<b>sp;``), so a single pass would not be idempotent.

    Note: every non-ASCII character is dropped, which loses accented and
    non-Latin text.
    """
    current = text or ""
    while True:
        cleaned = _sanitize_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned


# ---------------------------------------------------------------------------
# Highlighting
# ---------------------------------------------------------------------------

def normalize_search_term(value: str) -> str:
    return str(value or "").lower().strip()


def marker_element_id(search_id: str, match_index: int) -> str:
    return f"{search_id}-{match_index}"


@dataclass(frozen=True)
class HighlightResult:
    content: str
    match_range: tuple[int, int]
    total_match_count: int

    @property
    def match_count(self) -> int:
        return max(0, self.match_range[1] - self.match_range[0] + 1)


def _term_pattern(search_term: str) -> re.Pattern[str]:
    # Markup is matched first and left alone, so existing markers are never
    # highlighted again.
    return re.compile(r"<[^>]*>|(" + re.escape(search_term) + ")", re.IGNORECASE)


def highlight(content: str, search_term: str, search_id: str, starting_match_count: int) -> HighlightResult:
    """Wrap each occurrence of *search_term* in a numbered marker.

    The first marker gets ``starting_match_count``. A zero-match result has
    the empty range ``(start, start - 1)``.
    """
    start = int(starting_match_count)
    if not search_term:
        return HighlightResult(content, (start, start - 1), start - 1)

    next_id = start

    def _wrap(match: re.Match[str]) -> str:
        nonlocal next_id
        term = match.group(1)
        if term is None:
            return match.group(0)
        marker = marker_element_id(search_id, next_id)
        next_id += 1
        return f"<span class='{HIGHLIGHT_CLASS}' id='{marker}'>{term}</span>"

    out = _term_pattern(search_term).sub(_wrap, content)
    last = next_id - 1
    return HighlightResult(out, (start, last), last)


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetrievedContent:
    data: bytes
    mime_type: str


RetrievalStrategy = Callable[[StorageProvider, dict[str, Any]], Optional[RetrievedContent]]


def resolve_export_mime(mime_type: str) -> str:
    return MIME_EXPORT_TYPES.get(mime_type, mime_type)


def is_text_bearing(mime_type: str) -> bool:
    resolved = resolve_export_mime(str(mime_type or ""))
    return not any(marker in resolved for marker in NON_TEXT_MIME_MARKERS)


def _export_strategy(provider: StorageProvider, file: dict[str, Any]) -> RetrievedContent | None:
    mime = str(file.get("mimeType") or "")
    export_mime = MIME_EXPORT_TYPES.get(mime)
    if not export_mime:
        return None
    return RetrievedContent(provider.export_file(str(file["id"]), export_mime), export_mime)


def _media_strategy(provider: StorageProvider, file: dict[str, Any]) -> RetrievedContent | None:
    mime = str(file.get("mimeType") or "")
    return RetrievedContent(provider.get_file_media(str(file["id"])), mime)


RETRIEVAL_STRATEGIES: tuple[tuple[str, RetrievalStrategy], ...] = (
    ("export", _export_strategy),
    ("media", _media_strategy),
)


def retrieve_content(
    provider: StorageProvider,
    file: dict[str, Any],
    strategies: tuple[tuple[str, RetrievalStrategy], ...] = RETRIEVAL_STRATEGIES,
) -> RetrievedContent | None:
    """First non-empty result of *strategies*, or None.

    Strategy failures are logged and skipped. If nothing worked and one of
    the failures was a 401, that error is raised: an expired session is not
    a content problem.
    """
    file_id = file.get("id")
    if not is_text_bearing(str(file.get("mimeType") or "")):
        log.debug("Skipping content retrieval for non-text file %s", file_id)
        return None
    auth_failure: ProviderError | None = None
    for name, strategy in strategies:
        try:
            result = strategy(provider, file)
        except ProviderError as exc:
            log.debug("%s retrieval failed for file %s: %s", name, file_id, exc)
            if exc.is_auth_error:
                auth_failure = exc
            continue
        except Exception as exc:
            log.debug("%s retrieval failed for file %s: %s", name, file_id, exc)
            continue
        if result is not None and result.data:
            return result
    if auth_failure is not None:
        raise auth_failure
    return None


def fetch_file_text(provider: StorageProvider, file: dict[str, Any]) -> str | None:
    """Retrieve and extract the plain text of one file, or None."""
    retrieved = retrieve_content(provider, file)
    if retrieved is None:
        return None
    try:
        text = extract_text(retrieved.data, retrieved.mime_type)
    except Exception as exc:
        log.warning("Text extraction failed for file %s (%s): %s", file.get("id"), retrieved.mime_type, exc)
        return None
    return text if text and text.strip() else None


# ---------------------------------------------------------------------------
# Per-file processing
# ---------------------------------------------------------------------------

def is_pending(file: dict[str, Any]) -> bool:
    return file.get("_content") == PENDING_CONTENT


def process_file(
    file: dict[str, Any],
    text: str | None,
    search_term: str,
    search_id: str,
    starting_match_count: int,
) -> tuple[dict[str, Any], int]:
    """Return a copy of *file* with highlighted ``_content`` and ``range``,
    plus the new running match total."""
    record = dict(file)
    start = int(starting_match_count)
    cleaned = sanitize(text) if text else ""
    if not cleaned.strip():
        record["_content"] = NO_CONTENT
        record["range"] = [start, start - 1]
        return record, start - 1
    result = highlight(cleaned, search_term, search_id, start)
    record["_content"] = result.content
    record["range"] = [result.match_range[0], result.match_range[1]]
    return record, result.total_match_count


def fetch_and_highlight(
    provider: StorageProvider,
    file: dict[str, Any],
    search_term: str,
    search_id: str,
    starting_match_count: int,
) -> tuple[dict[str, Any], int]:
    text = fetch_file_text(provider, file)
    processed, total = process_file(file, text, search_term, search_id, starting_match_count)
    log.debug(
        "Highlighted file %s: range %s, total %d", file.get("id"), processed.get("range"), total
    )
    return processed, total

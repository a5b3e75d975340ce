"""Server-side and fuzzy (local) note search."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from ..errors import NotFoundError
from ..models import Note, SearchHit

logger = logging.getLogger(__name__)

Span = tuple[int, int]  # [start, end) into the title


class SearchSource(Protocol):
    async def search_notes(
        self,
        query: str,
        fast_search: bool = ...,
        include_archived: bool = ...,
        limit: int = ...,
    ) -> list[SearchHit]: ...

    async def get_note(self, note_id: str) -> Note: ...


@dataclass(frozen=True)
class SearchResult:
    note: Note
    score: float
    highlights: tuple[Span, ...] = ()


@dataclass(frozen=True)
class FuzzyMatch:
    score: float
    highlights: tuple[Span, ...]


def _spans(positions: Sequence[int]) -> tuple[Span, ...]:
    spans: list[Span] = []
    for pos in positions:
        if spans and spans[-1][1] == pos:
            spans[-1] = (spans[-1][0], pos + 1)
        else:
            spans.append((pos, pos + 1))
    return tuple(spans)


def _match_from(query: str, text: str, start: int) -> list[int] | None:
    positions: list[int] = []
    i = start
    for ch in query:
        i = text.find(ch, i)
        if i < 0:
            return None
        positions.append(i)
        i += 1
    return positions


def _tighten(query: str, text: str, end: int) -> int:
    """Latest start such that `query` still matches ending at `end`."""
    i = end
    for ch in reversed(query):
        i = text.rfind(ch, 0, i + 1)
        i -= 1
    return i + 1


def fuzzy_match(query: str, title: str) -> FuzzyMatch | None:
    """Case-insensitive subsequence match of `query` against `title`.

    The tightest window containing the subsequence is used. The score is
    the matched character count minus the gaps inside that window, scaled
    by the title length so every match scores at least zero.
    """
    q = query.lower()
    text = title.lower()
    if not q or not text:
        return None

    best: list[int] | None = None
    start = text.find(q[0])
    while start >= 0:
        forward = _match_from(q, text, start)
        if forward is None:
            break
        tight_start = _tighten(q, text, forward[-1])
        positions = _match_from(q, text, tight_start) or forward
        if best is None or positions[-1] - positions[0] < best[-1] - best[0]:
            best = positions
        start = text.find(q[0], tight_start + 1)

    if best is None:
        return None
    gaps = (best[-1] - best[0] + 1) - len(q)
    score = len(q) - gaps / len(text)
    return FuzzyMatch(score=score, highlights=_spans(best))


def fuzzy_search(query: str, notes: Iterable[Note], limit: int | None = None) -> list[SearchResult]:
    """Rank `notes` (in tree order) by fuzzy title match."""
    query = query.strip()
    if not query:
        return []

    scored: list[tuple[float, int, int, SearchResult]] = []
    for order, note in enumerate(notes):
        match = fuzzy_match(query, note.title)
        if match is None:
            continue
        result = SearchResult(note=note, score=match.score, highlights=match.highlights)
        scored.append((-match.score, len(note.title), order, result))

    scored.sort(key=lambda item: item[:3])
    results = [item[3] for item in scored]
    return results[:limit] if limit is not None else results


def term_highlights(query: str, title: str) -> tuple[Span, ...]:
    """Spans of each query word found verbatim (case-insensitive) in `title`."""
    text = title.lower()
    spans: set[Span] = set()
    for term in query.lower().split():
        start = text.find(term)
        while start >= 0:
            spans.add((start, start + len(term)))
            start = text.find(term, start + 1)
    return tuple(sorted(spans))


async def search_server(
    api: SearchSource,
    query: str,
    *,
    fast_search: bool = True,
    include_archived: bool = False,
    limit: int = 100,
) -> list[SearchResult]:
    """Run a server search and resolve each hit to a full note.

    Hits are ordered by server score, ties keeping the server's order. Each
    distinct hit id is fetched once; hits whose note has since disappeared
    are skipped.
    """
    query = query.strip()
    if not query:
        return []

    hits = await api.search_notes(query, fast_search=fast_search, include_archived=include_archived, limit=limit)
    ranked = sorted(hits, key=lambda h: (-h.score, h.position))

    seen: set[str] = set()
    results: list[SearchResult] = []
    for hit in ranked:
        if hit.note_id in seen:
            continue
        seen.add(hit.note_id)
        try:
            note = await api.get_note(hit.note_id)
        except NotFoundError:
            logger.debug(f"Search hit {hit.note_id} no longer exists, skipping")
            continue
        results.append(SearchResult(note=note, score=hit.score, highlights=term_highlights(query, note.title)))

    logger.info(f"Search {query!r}: {len(results)} of {len(hits)} hits resolved")
    return results


def clamp_selection(index: int, count: int) -> int:
    if count <= 0:
        return 0
    return max(0, min(index, count - 1))

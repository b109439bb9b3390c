"""Suburb matching for transcribed speech.

Speech-to-text mangles place names ("canley vail", "cabramata") and callers
wrap them in filler ("yeah I'm over in ..."), so the matcher scores every
gazetteer entry against every same-sized run of words in the query and only
accepts a clear winner.  A wrong suburb is worse than none: below the
threshold the caller's raw words are kept as an unconfirmed location.
"""

import logging
import re
from difflib import SequenceMatcher
from pathlib import Path
from typing import Iterable, NamedTuple, Sequence

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.85

SUBURBS: tuple[str, ...] = (
    "Abbotsbury",
    "Ashcroft",
    "Auburn",
    "Austral",
    "Bankstown",
    "Bass Hill",
    "Baulkham Hills",
    "Blacktown",
    "Bonnyrigg",
    "Bonnyrigg Heights",
    "Bossley Park",
    "Busby",
    "Cabramatta",
    "Cabramatta West",
    "Camden",
    "Campbelltown",
    "Canley Heights",
    "Canley Vale",
    "Carramar",
    "Casula",
    "Cecil Hills",
    "Chester Hill",
    "Chipping Norton",
    "Edensor Park",
    "Edmondson Park",
    "Fairfield",
    "Fairfield East",
    "Fairfield Heights",
    "Fairfield West",
    "Granville",
    "Green Valley",
    "Greenacre",
    "Greenfield Park",
    "Guildford",
    "Hammondville",
    "Harris Park",
    "Heckenberg",
    "Hinchinbrook",
    "Holsworthy",
    "Horningsea Park",
    "Hoxton Park",
    "Ingleburn",
    "Lansvale",
    "Leppington",
    "Lidcombe",
    "Liverpool",
    "Lurnea",
    "Merrylands",
    "Miller",
    "Moorebank",
    "Mount Druitt",
    "Mount Pritchard",
    "Narellan",
    "North Parramatta",
    "Old Guildford",
    "Panania",
    "Parramatta",
    "Penrith",
    "Prairiewood",
    "Prestons",
    "Punchbowl",
    "Revesby",
    "Rooty Hill",
    "Rosehill",
    "Sadleir",
    "Smithfield",
    "St Johns Park",
    "St Marys",
    "Sefton",
    "Seven Hills",
    "Toongabbie",
    "Villawood",
    "Wakeley",
    "Warwick Farm",
    "Wattle Grove",
    "Wentworthville",
    "West Hoxton",
    "Westmead",
    "Wetherill Park",
    "Yagoona",
    "Yennora",
)

_STRIP_RE = re.compile(r"[^a-z0-9\s'\-]")
# hyphens and apostrophes survive only between two word characters
_LOOSE_MARK_RE = re.compile(r"(?<![a-z0-9])['\-]|['\-](?![a-z0-9])")
_SPACE_RE = re.compile(r"\s+")


class Match(NamedTuple):
    name: str
    score: float


def normalize(text: str) -> str:
    lowered = (text or "").lower()
    lowered = _STRIP_RE.sub(" ", lowered)
    lowered = _LOOSE_MARK_RE.sub(" ", lowered)
    return _SPACE_RE.sub(" ", lowered).strip()


def similarity(query: str, candidate: str) -> float:
    """Best ratio between ``candidate`` and any window of ``query`` words.

    Windows are the candidate's word count and one either side, so
    "canleyvale" and "canley vale road" still line up.  Both arguments
    must already be normalized.
    """
    q_tokens = query.split()
    c_tokens = candidate.split()
    if not q_tokens or not c_tokens:
        return 0.0

    best = 0.0
    n = len(c_tokens)
    for size in {n - 1, n, n + 1}:
        if size < 1:
            continue
        if size >= len(q_tokens):
            windows = [query]
        else:
            windows = [" ".join(q_tokens[i:i + size]) for i in range(len(q_tokens) - size + 1)]
        for window in windows:
            ratio = SequenceMatcher(None, window, candidate).ratio()
            if ratio > best:
                best = ratio
    return best


def best_match(
    query: str,
    gazetteer: Sequence[str] = SUBURBS,
    threshold: float = MATCH_THRESHOLD,
) -> Match | None:
    """Highest scoring entry, or None when nothing reaches ``threshold``.

    Ties go to the longer name ("Fairfield West" over "Fairfield" when the
    caller said both words), then to gazetteer order.
    """
    normalized = normalize(query)
    if not normalized:
        return None

    best: Match | None = None
    for name in gazetteer:
        score = similarity(normalized, normalize(name))
        if best is None or score > best.score or (
            score == best.score and len(name) > len(best.name)
        ):
            best = Match(name, score)

    if best is None or best.score < threshold:
        return None
    return best


def match_location(
    query: str,
    gazetteer: Sequence[str] = SUBURBS,
    threshold: float = MATCH_THRESHOLD,
) -> str:
    """Canonical suburb name for ``query``, or "" if there is no confident match."""
    match = best_match(query, gazetteer, threshold)
    return match.name if match else ""


def load_gazetteer(path: str | Path) -> tuple[str, ...]:
    """Read one place name per line; blank lines and ``#`` comments are skipped."""
    lines: Iterable[str] = Path(path).read_text(encoding="utf-8").splitlines()
    names = tuple(
        line.strip() for line in lines if line.strip() and not line.lstrip().startswith("#")
    )
    if not names:
        raise ValueError(f"gazetteer file {path} has no entries")
    logger.info("Loaded %d place names from %s", len(names), path)
    return names

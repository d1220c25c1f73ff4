"""Opening recognition by longest move-prefix lookup.

Openings are keyed by canonical move strings such as "1.e4 e5 2.Nf3"
(White moves carry the move number, Black moves do not).

Usage:
    from game_review.openings import OpeningBook
    book = OpeningBook()
    match = book.identify(["e4", "c5"])
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping, Sequence

from game_review.models import OpeningMatch

logger = logging.getLogger(__name__)

# Longest prefix considered, in full moves
MAX_PREFIX_FULL_MOVES = 10


def _entry(moves: str, eco: str, name: str, variation: str | None = None):
    return moves, OpeningMatch(eco=eco, name=name, moves=moves, variation=variation)


_BUILTIN_OPENINGS: dict[str, OpeningMatch] = dict([
    # King's pawn openings
    _entry("1.e4", "B00", "King's Pawn Opening"),
    _entry("1.e4 e5", "C20", "King's Pawn Game"),
    _entry("1.e4 e5 2.Nf3", "C40", "King's Knight Opening"),
    _entry("1.e4 e5 2.Nf3 Nc6", "C44", "King's Pawn Game"),
    _entry("1.e4 e5 2.Nf3 Nc6 3.Bb5", "C60", "Ruy Lopez", "Spanish Opening"),
    _entry("1.e4 e5 2.Nf3 Nc6 3.Bc4", "C50", "Italian Game"),
    _entry("1.e4 e5 2.Nf3 Nc6 3.Bc4 Bc5", "C50", "Italian Game", "Giuoco Piano"),
    _entry("1.e4 e5 2.Nf3 Nc6 3.Bc4 Nf6", "C55", "Italian Game", "Two Knights Defense"),
    _entry("1.e4 e5 2.Nf3 Nf6", "C42", "Petrov's Defense", "Russian Game"),
    _entry("1.e4 c5", "B20", "Sicilian Defense"),
    _entry("1.e4 c5 2.Nf3", "B20", "Sicilian Defense"),
    _entry("1.e4 c5 2.Nf3 d6", "B50", "Sicilian Defense"),
    _entry("1.e4 c5 2.Nf3 Nc6", "B30", "Sicilian Defense", "Old Sicilian"),
    _entry("1.e4 c5 2.Nf3 e6", "B40", "Sicilian Defense", "French Variation"),
    _entry("1.e4 c6", "B10", "Caro-Kann Defense"),
    _entry("1.e4 e6", "C00", "French Defense"),
    _entry("1.e4 d5", "B01", "Scandinavian Defense", "Center Counter"),
    _entry("1.e4 Nf6", "B00", "Alekhine's Defense"),
    # Queen's pawn openings
    _entry("1.d4", "A40", "Queen's Pawn Opening"),
    _entry("1.d4 d5", "D00", "Queen's Pawn Game"),
    _entry("1.d4 d5 2.c4", "D06", "Queen's Gambit"),
    _entry("1.d4 d5 2.c4 e6", "D30", "Queen's Gambit Declined"),
    _entry("1.d4 d5 2.c4 c6", "D10", "Slav Defense"),
    _entry("1.d4 d5 2.c4 dxc4", "D20", "Queen's Gambit Accepted"),
    _entry("1.d4 Nf6", "A45", "Indian Defense"),
    _entry("1.d4 Nf6 2.c4", "E00", "Indian Defense"),
    _entry("1.d4 Nf6 2.c4 e6", "E00", "Indian Defense"),
    _entry("1.d4 Nf6 2.c4 g6", "E60", "King's Indian Defense"),
    _entry("1.d4 Nf6 2.c4 e6 3.Nc3 Bb4", "E20", "Nimzo-Indian Defense"),
    _entry("1.d4 Nf6 2.c4 e6 3.Nf3 b6", "E10", "Queen's Indian Defense"),
    # English
    _entry("1.c4", "A10", "English Opening"),
    _entry("1.c4 e5", "A20", "English Opening", "Reversed Sicilian"),
    _entry("1.c4 Nf6", "A10", "English Opening", "Anglo-Indian Defense"),
    _entry("1.c4 c5", "A20", "English Opening", "Symmetrical Variation"),
    # Flank openings
    _entry("1.b3", "A01", "Nimzo-Larsen Attack"),
    _entry("1.Nf3", "A04", "Reti Opening"),
    _entry("1.Nf3 d5", "A06", "Reti Opening"),
    _entry("1.Nf3 d5 2.c4", "A09", "Reti Opening"),
    _entry("1.Nf3 Nf6", "A04", "Reti Opening", "King's Indian Attack"),
    _entry("1.f4", "A02", "Bird's Opening"),
    _entry("1.g3", "A00", "Hungarian Opening", "King's Fianchetto"),
    _entry("1.e3", "A00", "Van't Kruijs Opening"),
    _entry("1.Nc3", "A00", "Dunst Opening"),
])


def build_move_string(san_moves: Sequence[str]) -> str:
    """Format SAN moves as a canonical prefix.

    E.g., ['e4', 'e5', 'Nf3'] -> '1.e4 e5 2.Nf3'
    """
    parts = []
    for i, move in enumerate(san_moves):
        if i % 2 == 0:
            parts.append(f"{i // 2 + 1}.{move}")
        else:
            parts.append(move)
    return " ".join(parts)


class OpeningBook:
    """Opening dictionary with longest-prefix identification.

    Extra entries can be loaded from a JSON file mapping move strings to
    {"eco", "name", "variation"} objects; they extend or override the
    built-in table.
    """

    def __init__(
        self,
        entries: Mapping[str, OpeningMatch] | None = None,
        path: str | None = None,
    ) -> None:
        self._entries: dict[str, OpeningMatch] = dict(
            _BUILTIN_OPENINGS if entries is None else entries
        )
        if path is not None:
            self._entries.update(self._load_file(path))

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def _load_file(path: str) -> dict[str, OpeningMatch]:
        """Load extra entries from JSON. Returns {} if unavailable."""
        if not os.path.exists(path):
            logger.warning("Opening file not found: %s", path)
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Could not read opening file %s: %s", path, exc)
            return {}

        entries = {}
        for moves, data in raw.items():
            if not isinstance(data, dict) or "eco" not in data or "name" not in data:
                logger.debug("Skipping malformed opening entry %r", moves)
                continue
            entries[moves] = OpeningMatch(
                eco=data["eco"],
                name=data["name"],
                moves=moves,
                variation=data.get("variation"),
            )
        return entries

    def identify(self, san_moves: Sequence[str]) -> OpeningMatch | None:
        """Identify the most specific opening for a move sequence.

        Args:
            san_moves: Moves in SAN, e.g. ["e4", "e5", "Nf3"].

        Returns:
            The longest matching OpeningMatch, or None.
        """
        longest = min(len(san_moves), MAX_PREFIX_FULL_MOVES * 2)
        for length in range(longest, 0, -1):
            match = self._entries.get(build_move_string(san_moves[:length]))
            if match is not None:
                return match
        return None

    def continuations(self, san_moves: Sequence[str], limit: int = 10) -> list[OpeningMatch]:
        """Named openings that extend the given move sequence."""
        prefix = build_move_string(san_moves)
        found = [
            match for moves, match in self._entries.items()
            if not prefix or (moves.startswith(prefix + " ") and moves != prefix)
        ]
        found.sort(key=lambda m: (len(m.moves), m.moves))
        return found[:limit]

    def search(self, query: str, limit: int = 20) -> list[OpeningMatch]:
        """Case-insensitive search over ECO codes, names and variations."""
        needle = query.lower()
        found = [
            match for match in self._entries.values()
            if needle in match.eco.lower()
            or needle in match.name.lower()
            or (match.variation and needle in match.variation.lower())
        ]
        found.sort(key=lambda m: (m.eco, m.moves))
        return found[:limit]


_default_book: OpeningBook | None = None


def detect_opening(san_moves: Sequence[str]) -> OpeningMatch | None:
    """Identify an opening with the built-in book."""
    global _default_book
    if _default_book is None:
        _default_book = OpeningBook()
    return _default_book.identify(san_moves)

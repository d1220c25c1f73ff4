"""Exception hierarchy for game review."""

from __future__ import annotations


class GameReviewError(Exception):
    """Base class for all game review errors."""


class ProtocolParseError(GameReviewError, ValueError):
    """A token in an engine output line could not be parsed.

    Never escapes the codec: the offending field is dropped.
    """


class SessionInitError(GameReviewError):
    """The engine process could not be started or never became ready."""


class EngineTerminatedError(GameReviewError):
    """The engine session is terminated and accepts no more commands."""


class InvalidInput(GameReviewError, ValueError):
    """A FEN, PGN or move list supplied by the caller is malformed."""


class AnalysisError(GameReviewError):
    """A batch run failed; the message is suitable for end users."""


class SessionBusyError(GameReviewError):
    """The session is reserved for a batch run started elsewhere."""

"""UCI engine session.

One EngineSession owns one engine process. A dedicated actor thread owns
the transport and the session state machine; a reader thread feeds engine
output into the actor's inbox; public methods only enqueue commands and
read immutable snapshots.

    UNINITIALIZED -> INITIALIZING -> READY <-> BUSY -> ... -> TERMINATED
"""

from __future__ import annotations

import logging
import queue
import subprocess
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum
from typing import Protocol

from game_review.errors import EngineTerminatedError, SessionBusyError, SessionInitError
from game_review.models import BestMoveResult, EngineReport, ReadySignal
from game_review.settings import (
    INIT_TIMEOUT_S,
    SETTLE_TIMEOUT_S,
    AnalysisSettings,
    clamp_depth,
    clamp_multipv,
    find_engine,
)
from game_review import uci

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    BUSY = "busy"
    TERMINATED = "terminated"


# ---------------------------------------------------------------------------
# Events delivered to subscribers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReadyEvent:
    pass


@dataclass(frozen=True)
class InfoEvent:
    report: EngineReport


@dataclass(frozen=True)
class BestMoveEvent:
    result: BestMoveResult


@dataclass(frozen=True)
class ErrorEvent:
    message: str


SessionEvent = ReadyEvent | InfoEvent | BestMoveEvent | ErrorEvent
Subscriber = Callable[[SessionEvent], None]


@dataclass(frozen=True)
class SessionSnapshot:
    """Point-in-time view of the current analysis request."""

    state: SessionState = SessionState.UNINITIALIZED
    request_id: int = 0
    fen: str | None = None
    report: EngineReport | None = None
    lines: tuple[EngineReport, ...] = ()
    best_move: str | None = None
    ponder: str | None = None
    error: str | None = None

    @property
    def busy(self) -> bool:
        return self.state == SessionState.BUSY


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class EngineTransport(Protocol):
    """Line-oriented pipe to an engine."""

    def start(self) -> None: ...

    def send(self, line: str) -> None: ...

    def read_line(self) -> str | None: ...

    def close(self) -> None: ...


class SubprocessTransport:
    """Talks to an engine binary over stdin/stdout."""

    def __init__(self, engine_path: str) -> None:
        self.engine_path = engine_path
        self._process: subprocess.Popen | None = None

    def start(self) -> None:
        """Spawn the engine process.

        Raises:
            OSError: If the binary cannot be executed.
        """
        self._process = subprocess.Popen(
            [self.engine_path],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            bufsize=1,
        )
        logger.info("Started engine %s [pid %s]", self.engine_path, self._process.pid)

    def send(self, line: str) -> None:
        if self._process is None or self._process.stdin is None:
            raise OSError("Engine process is not running")
        try:
            self._process.stdin.write(line + "\n")
            self._process.stdin.flush()
        except ValueError as exc:
            # write on a closed pipe
            raise OSError(str(exc)) from exc

    def read_line(self) -> str | None:
        if self._process is None or self._process.stdout is None:
            return None
        line = self._process.stdout.readline()
        if line == "":
            return None
        return line.rstrip("\r\n")

    def close(self) -> None:
        process = self._process
        if process is None:
            return
        if process.stdin is not None:
            try:
                process.stdin.close()
            except OSError:
                logger.debug("Engine stdin already closed")
        try:
            process.wait(timeout=2.0)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
        logger.info("Engine exited with code %s", process.returncode)


# ---------------------------------------------------------------------------
# Actor inbox messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Init:
    pass


@dataclass(frozen=True)
class _Analyze:
    request_id: int
    fen: str | None
    moves: tuple[str, ...]
    depth: int
    multipv: int


@dataclass(frozen=True)
class _Stop:
    pass


@dataclass(frozen=True)
class _Quit:
    pass


@dataclass(frozen=True)
class _EngineLine:
    text: str


@dataclass(frozen=True)
class _EngineEof:
    pass


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class EngineSession:
    """Lifecycle and request handling for a single UCI engine."""

    def __init__(
        self,
        transport: EngineTransport,
        *,
        options: dict[str, object] | None = None,
        settle_timeout: float = SETTLE_TIMEOUT_S,
    ) -> None:
        self._transport = transport
        self._options = dict(options or {})
        self._settle_timeout = settle_timeout

        self._lock = threading.Lock()
        self._snapshot = SessionSnapshot()
        self._subscribers: list[Subscriber] = []
        self._batch_owner: int | None = None
        self._ready_event = threading.Event()
        self._inbox: queue.Queue = queue.Queue()
        self._actor: threading.Thread | None = None
        self._reader: threading.Thread | None = None

        # Actor-thread only
        self._searching = False
        self._stop_sent_at: float | None = None
        self._active_request = 0
        self._pending: _Analyze | None = None
        self._engine_multipv = 1
        self._quitting = False

    @classmethod
    def from_settings(cls, settings: AnalysisSettings) -> EngineSession:
        """Create a session for the engine binary named by *settings*.

        Raises:
            SessionInitError: If no engine binary can be found.
        """
        try:
            path = find_engine(settings.engine_path)
        except FileNotFoundError as exc:
            raise SessionInitError(str(exc)) from exc
        return cls(SubprocessTransport(path), options=settings.engine_options())

    # -- public API ---------------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._snapshot.state

    @property
    def batch_mode(self) -> bool:
        with self._lock:
            return self._batch_owner is not None

    @contextmanager
    def batch(self) -> Iterator[EngineSession]:
        """Reserve the session for the calling thread during a full-game run.

        While the reservation is held, analyze() calls from other threads
        are refused.

        Raises:
            SessionBusyError: If another batch run holds the session.
        """
        with self._lock:
            if self._batch_owner is not None:
                raise SessionBusyError("Engine session is already running a batch")
            self._batch_owner = threading.get_ident()
        try:
            yield self
        finally:
            with self._lock:
                self._batch_owner = None

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return self._snapshot

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* for session events.

        Callbacks run on the session's actor thread.

        Returns:
            A function that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def initialize(self, timeout: float = INIT_TIMEOUT_S) -> None:
        """Start the engine and complete the UCI handshake.

        Blocks until the engine answers ``readyok`` or *timeout* expires.
        Calling it on a ready session is a no-op.

        Raises:
            SessionInitError: If the engine fails to start or to answer.
            EngineTerminatedError: If the session was already terminated.
        """
        with self._lock:
            state = self._snapshot.state
            if state == SessionState.TERMINATED:
                raise EngineTerminatedError("Engine session is terminated")
            if state != SessionState.UNINITIALIZED:
                return
            self._snapshot = replace(self._snapshot, state=SessionState.INITIALIZING)

        try:
            self._transport.start()
        except OSError as exc:
            message = f"Failed to start engine: {exc}"
            self._terminate(message)
            raise SessionInitError(message) from exc

        self._reader = threading.Thread(
            target=self._read_loop, name="engine-reader", daemon=True
        )
        self._actor = threading.Thread(
            target=self._run, name="engine-session", daemon=True
        )
        self._reader.start()
        self._actor.start()
        self._inbox.put(_Init())

        if not self._ready_event.wait(timeout):
            message = f"Engine did not become ready within {timeout:.1f}s"
            self._inbox.put(_Quit())
            self._terminate(message)
            raise SessionInitError(message)

        snap = self.snapshot()
        if snap.state == SessionState.TERMINATED:
            raise SessionInitError(snap.error or "Engine terminated during startup")

    def analyze(
        self,
        fen: str | None,
        depth: int,
        multipv: int = 1,
        moves: list[str] | None = None,
    ) -> int:
        """Request a depth-limited search of *fen*.

        Results from any previous request are discarded from this point
        on; if the engine is still searching, it is stopped first.

        Returns:
            The id of the new request.

        Raises:
            EngineTerminatedError: If the session is terminated.
            SessionBusyError: If another thread holds a batch reservation.
            RuntimeError: If the session was never initialized.
        """
        with self._lock:
            owner = self._batch_owner
            if owner is not None and owner != threading.get_ident():
                raise SessionBusyError("Engine session is reserved for a batch run")
            state = self._snapshot.state
            if state == SessionState.TERMINATED:
                raise EngineTerminatedError("Engine session is terminated")
            if state in (SessionState.UNINITIALIZED, SessionState.INITIALIZING):
                raise RuntimeError("Engine session is not initialized")
            request_id = self._snapshot.request_id + 1
            self._snapshot = SessionSnapshot(
                state=SessionState.BUSY,
                request_id=request_id,
                fen=fen,
            )

        self._inbox.put(
            _Analyze(
                request_id=request_id,
                fen=fen,
                moves=tuple(moves or ()),
                depth=clamp_depth(depth),
                multipv=clamp_multipv(multipv),
            )
        )
        return request_id

    def stop(self) -> None:
        """Ask the engine to finish the current search early."""
        if self.state == SessionState.TERMINATED:
            return
        self._inbox.put(_Stop())

    def close(self, timeout: float = 3.0) -> None:
        """Quit the engine. The session is unusable afterwards."""
        with self._lock:
            state = self._snapshot.state
        if state == SessionState.TERMINATED:
            return
        if self._actor is None:
            self._set_state(SessionState.TERMINATED)
            return
        self._inbox.put(_Quit())
        self._actor.join(timeout)
        if self._actor.is_alive():
            logger.warning("Engine session did not shut down within %.1fs", timeout)
            self._terminate(None)

    quit = close

    def __enter__(self) -> EngineSession:
        self.initialize()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -- threads ------------------------------------------------------------

    def _read_loop(self) -> None:
        while True:
            try:
                line = self._transport.read_line()
            except (OSError, ValueError):
                line = None
            if line is None:
                self._inbox.put(_EngineEof())
                return
            self._inbox.put(_EngineLine(line))

    def _run(self) -> None:
        while True:
            try:
                message = self._inbox.get(timeout=self._inbox_timeout())
            except queue.Empty:
                self._check_settle()
                continue

            try:
                done = self._handle(message)
            except OSError as exc:
                logger.error("Engine pipe failed: %s", exc)
                self._terminate(f"Engine communication failed: {exc}")
                return
            if done:
                return

    def _inbox_timeout(self) -> float | None:
        if self._stop_sent_at is not None and self._pending is not None:
            return 0.05
        return None

    def _handle(self, message: object) -> bool:
        if isinstance(message, _EngineLine):
            self._on_line(message.text)
        elif isinstance(message, _Analyze):
            self._on_analyze(message)
        elif isinstance(message, _Stop):
            self._send_stop()
        elif isinstance(message, _Init):
            self._send(uci.format_uci())
        elif isinstance(message, _Quit):
            self._shutdown()
            return True
        elif isinstance(message, _EngineEof):
            if not self._quitting:
                logger.error("Engine process exited unexpectedly")
                self._terminate("Engine process exited unexpectedly")
            return True
        return False

    # -- actor handlers -----------------------------------------------------

    def _on_analyze(self, request: _Analyze) -> None:
        if self._searching:
            # never overlap searches: wait for the old bestmove first
            self._pending = request
            self._send_stop()
            return
        self._start_search(request)

    def _start_search(self, request: _Analyze) -> None:
        with self._lock:
            current = self._snapshot.request_id
        if request.request_id != current:
            logger.debug("Skipping superseded request %d", request.request_id)
            return
        self._send(uci.format_position(request.fen, list(request.moves)))
        for command in uci.format_go(request.depth, request.multipv, self._engine_multipv):
            self._send(command)
        self._engine_multipv = request.multipv
        self._searching = True
        self._stop_sent_at = None
        self._active_request = request.request_id

    def _send_stop(self) -> None:
        if not self._searching or self._stop_sent_at is not None:
            return
        self._send(uci.format_stop())
        self._stop_sent_at = time.monotonic()

    def _check_settle(self) -> None:
        if self._stop_sent_at is None or self._pending is None:
            return
        if time.monotonic() - self._stop_sent_at < self._settle_timeout:
            return
        logger.warning(
            "Engine did not answer stop within %.1fs; starting next search",
            self._settle_timeout,
        )
        self._searching = False
        self._start_pending()

    def _start_pending(self) -> None:
        pending, self._pending = self._pending, None
        if pending is not None:
            self._start_search(pending)

    def _on_line(self, text: str) -> None:
        logger.debug("<< %s", text)
        parsed = uci.parse_line(text)
        if isinstance(parsed, EngineReport):
            self._on_report(parsed)
        elif isinstance(parsed, BestMoveResult):
            self._on_bestmove(parsed)
        elif isinstance(parsed, ReadySignal):
            self._on_ready_signal(parsed)

    def _on_ready_signal(self, signal: ReadySignal) -> None:
        if self.state != SessionState.INITIALIZING:
            return
        if signal.keyword == "uciok":
            for name, value in self._options.items():
                self._send(uci.format_setoption(name, value))
            self._send(uci.format_isready())
            return
        self._set_state(SessionState.READY)
        logger.info("Engine ready")
        self._ready_event.set()
        self._emit(ReadyEvent())

    def _on_report(self, report: EngineReport) -> None:
        with self._lock:
            snap = self._snapshot
            if self._active_request != snap.request_id or not self._searching:
                return
            lines = snap.lines
            if report.multipv is not None and report.score is not None:
                by_rank = {line.multipv: line for line in lines}
                by_rank[report.multipv] = report
                lines = tuple(by_rank[rank] for rank in sorted(by_rank))
            primary = report.score is not None and (report.multipv or 1) == 1
            self._snapshot = replace(
                snap,
                report=report if primary else snap.report,
                lines=lines,
            )
        self._emit(InfoEvent(report))

    def _on_bestmove(self, result: BestMoveResult) -> None:
        self._searching = False
        self._stop_sent_at = None
        with self._lock:
            snap = self._snapshot
            current = self._active_request == snap.request_id
            if current:
                self._snapshot = replace(
                    snap,
                    state=SessionState.READY,
                    best_move=result.move,
                    ponder=result.ponder,
                )
        if current:
            self._emit(BestMoveEvent(result))
        else:
            logger.debug("Discarding stale bestmove %s", result.move)
        self._start_pending()

    def _shutdown(self) -> None:
        if not self._quitting:
            self._quitting = True
            try:
                self._send(uci.format_quit())
            except OSError as exc:
                logger.debug("Could not send quit: %s", exc)
            self._transport.close()
        self._terminate(None)
        logger.info("Engine session closed")

    # -- helpers ------------------------------------------------------------

    def _send(self, line: str) -> None:
        logger.debug(">> %s", line)
        self._transport.send(line)

    def _set_state(self, state: SessionState) -> None:
        with self._lock:
            self._snapshot = replace(self._snapshot, state=state)

    def _terminate(self, error: str | None) -> None:
        with self._lock:
            if self._snapshot.state == SessionState.TERMINATED:
                return
            self._snapshot = replace(
                self._snapshot, state=SessionState.TERMINATED, error=error
            )
        self._ready_event.set()
        if error is not None:
            self._emit(ErrorEvent(error))
            if not self._quitting:
                self._quitting = True
                try:
                    self._transport.close()
                except OSError as exc:
                    logger.debug("Closing transport failed: %s", exc)

    def _emit(self, event: SessionEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Session subscriber failed on %s", type(event).__name__)

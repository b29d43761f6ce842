"""Per-browser state machine for upload, bootstrap and analysis.

A session's whole state is one frozen ``SessionState`` value; every transition
swaps it out under the session lock. Analyses run on a shared thread pool and
each one carries a request token. Only the response holding the newest token
may settle the state, so a slow, superseded request can never overwrite a
newer result.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Protocol, Union

from werkzeug.datastructures import FileStorage

from analysis import PATTERN_PROMPT, failure_from_exception
from bootstrap import DEFAULT_IMAGE_PATH, DEFAULT_PATTERN_TEXT, load_default_image
from errors import AnalysisInProgress, MissingImage, PatternError
from ingest import ImagePayload, ingest_upload

logger = logging.getLogger(__name__)

SESSION_TTL_HOURS = 6

# -------------------------------------------------------------------
# State values
# -------------------------------------------------------------------


@dataclass(frozen=True)
class Idle:
    status: str = field(default="idle", init=False)


@dataclass(frozen=True)
class Loading:
    status: str = field(default="loading", init=False)


@dataclass(frozen=True)
class Ready:
    text: str
    status: str = field(default="ready", init=False)


@dataclass(frozen=True)
class Failed:
    reason: str
    status: str = field(default="failed", init=False)


AnalysisState = Union[Idle, Loading, Ready, Failed]


@dataclass(frozen=True)
class SessionState:
    image: Optional[ImagePayload] = None
    analysis: AnalysisState = Idle()
    # why the last upload was refused; cleared by the next transition
    notice: Optional[str] = None

    @property
    def loading(self) -> bool:
        return isinstance(self.analysis, Loading)

    @property
    def text(self) -> str:
        return self.analysis.text if isinstance(self.analysis, Ready) else ""

    @property
    def error(self) -> Optional[str]:
        if self.notice:
            return self.notice
        return self.analysis.reason if isinstance(self.analysis, Failed) else None


class Analyzer(Protocol):
    def analyze(self, image: ImagePayload, prompt: str) -> str: ...


# -------------------------------------------------------------------
# Controller
# -------------------------------------------------------------------


class PatternSession:
    def __init__(
        self,
        analyzer: Analyzer,
        executor: Executor,
        prompt: str = PATTERN_PROMPT,
        default_image_path: str = DEFAULT_IMAGE_PATH,
    ) -> None:
        self.analyzer = analyzer
        self.executor = executor
        self.prompt = prompt
        self.default_image_path = default_image_path
        self._lock = threading.Lock()
        self._state = SessionState()
        self._token = 0

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    def _supersede(self) -> int:
        self._token += 1
        return self._token

    def bootstrap(self) -> SessionState:
        """Show the bundled example without calling the model."""
        try:
            image = load_default_image(self.default_image_path)
        except PatternError as exc:
            with self._lock:
                self._supersede()
                self._state = SessionState(image=None, analysis=Failed(exc.message))
                return self._state
        with self._lock:
            self._supersede()
            self._state = SessionState(image=image, analysis=Ready(DEFAULT_PATTERN_TEXT))
            return self._state

    def upload_requested(self, fs: FileStorage) -> Optional[Future]:
        """Ingest an upload and, if it is accepted, start analysing it.

        Returns the analysis future, or None when the file was rejected.
        """
        try:
            image = ingest_upload(fs)
        except PatternError as exc:
            self.reject(exc)
            return None
        return self.analyze_requested(image)

    def reject(self, exc: PatternError) -> None:
        """Show why an upload was refused; image and analysis stay as they are."""
        logger.warning("upload rejected: %s", exc.code)
        with self._lock:
            self._state = replace(self._state, notice=exc.message)

    def _start_locked(self, image: ImagePayload) -> int:
        token = self._supersede()
        self._state = SessionState(image=image, analysis=Loading())
        return token

    def analyze_requested(self, image: ImagePayload) -> Future:
        with self._lock:
            token = self._start_locked(image)
        return self._submit(token, image)

    def _submit(self, token: int, image: ImagePayload) -> Future:
        logger.info("analysis %d started (%s, %d bytes)", token, image.media_type, image.size)
        try:
            return self.executor.submit(self._run_analysis, token, image)
        except RuntimeError as exc:
            logger.error("could not schedule analysis %d: %s", token, exc)
            outcome = Failed(failure_from_exception(exc).message)
            with self._lock:
                if token == self._token:
                    self._state = replace(self._state, analysis=outcome)
            done: Future = Future()
            done.set_result(outcome)
            return done

    def retry_requested(self) -> Future:
        # check and switch to Loading under one lock so a double click starts one request
        with self._lock:
            image = self._state.image
            if self._state.loading:
                raise AnalysisInProgress()
            if image is None:
                raise MissingImage()
            token = self._start_locked(image)
        return self._submit(token, image)

    def _run_analysis(self, token: int, image: ImagePayload) -> AnalysisState:
        try:
            outcome: AnalysisState = Ready(self.analyzer.analyze(image, self.prompt))
        except Exception as exc:
            outcome = Failed(failure_from_exception(exc).message)
        with self._lock:
            if token != self._token:
                logger.debug("discarding analysis %d, superseded by %d", token, self._token)
                return outcome
            self._state = replace(self._state, analysis=outcome, notice=None)
        logger.info("analysis %d finished: %s", token, outcome.status)
        return outcome


# -------------------------------------------------------------------
# Registry
# -------------------------------------------------------------------


class SessionStore:
    """In-memory map of browser session id to PatternSession.

    Nothing is written to disk; sessions idle past the TTL are dropped.
    """

    def __init__(
        self,
        analyzer: Analyzer,
        executor: Executor,
        default_image_path: str = DEFAULT_IMAGE_PATH,
        ttl_hours: float = SESSION_TTL_HOURS,
    ) -> None:
        self.analyzer = analyzer
        self.executor = executor
        self.default_image_path = default_image_path
        self.ttl = timedelta(hours=ttl_hours)
        self._sessions: Dict[str, PatternSession] = {}
        self._last_seen: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def new_id(self) -> str:
        return uuid.uuid4().hex

    def get(self, sid: str) -> PatternSession:
        """Return the session for ``sid``, creating and bootstrapping it if needed."""
        now = datetime.now(timezone.utc)
        with self._lock:
            self._prune(now)
            sess = self._sessions.get(sid)
            created = sess is None
            if created:
                sess = PatternSession(
                    self.analyzer,
                    self.executor,
                    default_image_path=self.default_image_path,
                )
                self._sessions[sid] = sess
            self._last_seen[sid] = now
        if created:
            logger.info("new session %s", sid[:8])
            sess.bootstrap()
        return sess

    def _prune(self, now: datetime) -> None:
        cutoff = now - self.ttl
        for sid in [s for s, seen in self._last_seen.items() if seen < cutoff]:
            self._sessions.pop(sid, None)
            self._last_seen.pop(sid, None)

"""Flashcard review session state.

A `StudySession` walks a shuffled copy of a term list one card at a time.
Answering a card records a `review` activity through `ActivityService`.
`StudySessionRegistry` keeps the open sessions of the HTTP app in memory.
"""

import random
import threading
import uuid
from typing import Any, Dict, List, Optional

from .errors import NotFoundError, PartialFailure
from .services import ActivityService


class StudySession:
    def __init__(self, activity: Optional[ActivityService] = None, rng: Optional[random.Random] = None):
        self.activity = activity
        self.rng = rng or random.Random()
        self.end()

    def start(self, terms: List[Dict[str, Any]]) -> bool:
        """Begin a session over `terms`; returns False when there is nothing to study."""
        if not terms:
            return False
        shuffled = list(terms)
        self.rng.shuffle(shuffled)
        self.terms = shuffled
        self.current_index = 0
        self.is_active = True
        self.show_answer = False
        return True

    def end(self) -> None:
        self.terms: List[Dict[str, Any]] = []
        self.current_index = 0
        self.is_active = False
        self.show_answer = False

    @property
    def total(self) -> int:
        return len(self.terms)

    @property
    def current_term(self) -> Optional[Dict[str, Any]]:
        if not self.is_active or self.current_index >= len(self.terms):
            return None
        return self.terms[self.current_index]

    def reveal(self) -> None:
        self.show_answer = True

    def next(self) -> Optional[Dict[str, Any]]:
        self.current_index += 1
        self.show_answer = False
        return self.current_term

    def is_complete(self) -> bool:
        return self.is_active and self.current_index >= len(self.terms)

    def progress(self) -> Dict[str, int]:
        """Position of the current card as `{current, total, percentage}`."""
        if not self.is_active or not self.terms:
            return {"current": 0, "total": 0, "percentage": 0}
        current = min(self.current_index + 1, self.total)
        return {"current": current, "total": self.total, "percentage": round(current / self.total * 100)}

    def snapshot(self) -> Dict[str, Any]:
        """Public view of the session; the meaning stays hidden until revealed."""
        term = self.current_term
        card = None
        if term is not None:
            card = {k: term.get(k) for k in ("id", "term", "example", "category", "image_url")}
            if self.show_answer:
                card["meaning"] = term.get("meaning")
        return {
            "is_active": self.is_active,
            "is_complete": self.is_complete(),
            "show_answer": self.show_answer,
            "card": card,
            "progress": self.progress(),
        }

    def answer(self, is_correct: bool) -> Optional[str]:
        """Record the result for the current card and move to the next one.

        Returns the review log id, or None when no activity service is
        attached. Raises `RuntimeError` if there is no current card.
        """
        term = self.current_term
        if term is None:
            raise RuntimeError("no active card to answer")
        log_id = None
        if self.activity is not None:
            try:
                log_id = self.activity.log_activity(
                    "review",
                    term["category"],
                    {"termId": term["id"], "term": term.get("term", ""), "isCorrect": bool(is_correct)},
                )
            except PartialFailure:
                # the review itself was stored, so the card is done
                self.next()
                raise
        self.next()
        return log_id


class StudySessionRegistry:
    """Open study sessions keyed by a generated id.

    Sessions live in process memory only. Once `max_sessions` is exceeded
    the oldest sessions are dropped.
    """

    def __init__(self, max_sessions: int = 200):
        self._sessions: Dict[str, StudySession] = {}
        self._lock = threading.Lock()
        self._max_sessions = max_sessions

    def open(self, session: StudySession) -> str:
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[session_id] = session
            while len(self._sessions) > self._max_sessions:
                # dicts keep insertion order, so the first key is the oldest
                self._sessions.pop(next(iter(self._sessions)))
        return session_id

    def get(self, session_id: str) -> StudySession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"study session not found: {session_id}")
        return session

    def close(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise NotFoundError(f"study session not found: {session_id}")
        session.end()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

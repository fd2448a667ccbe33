"""Explicit cache of resolved quiz definitions.

The application owns one `QuizCache` and hands it to the quiz routes.
Reads go through `get`/`put`; every quiz mutation calls `invalidate`.

A reader that misses records `generation()` before loading from the
database and passes it to `put`. Any `invalidate` in between bumps the
generation, so the possibly stale definition is not stored.
"""

from __future__ import annotations

import threading
from typing import Dict, Optional

from .grading import QuizDefinition


class QuizCache:
    def __init__(self, max_entries: int = 256):
        self._entries: Dict[str, QuizDefinition] = {}
        self._lock = threading.Lock()
        self._max_entries = max_entries
        self._generation = 0

    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, quiz_id: str) -> Optional[QuizDefinition]:
        with self._lock:
            return self._entries.get(quiz_id)

    def put(self, quiz: QuizDefinition, generation: Optional[int] = None) -> bool:
        """Store `quiz` unless the cache was invalidated since `generation`."""
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries.pop(quiz.id, None)
            self._entries[quiz.id] = quiz
            while len(self._entries) > self._max_entries:
                # dicts keep insertion order; drop the oldest entry
                self._entries.pop(next(iter(self._entries)))
            return True

    def invalidate(self, quiz_id: Optional[str] = None) -> None:
        """Drop one quiz, or everything when `quiz_id` is None."""
        with self._lock:
            self._generation += 1
            if quiz_id is None:
                self._entries.clear()
            else:
                self._entries.pop(quiz_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

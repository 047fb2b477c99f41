from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Literal, Protocol

CeremonyKind = Literal["registration", "authentication"]


@dataclass(frozen=True)
class ChallengeKey:
    kind: CeremonyKind
    identifier: str


class ChallengeStore(Protocol):
    """Pending WebAuthn challenges, one per (ceremony kind, user identifier).

    `set` overwrites any pending challenge for the key (last write wins).
    `pop` returns and removes the challenge in one step so a challenge can be
    consumed at most once.
    """

    def set(self, key: ChallengeKey, challenge: str) -> None:
        ...

    def get(self, key: ChallengeKey) -> str | None:
        ...

    def pop(self, key: ChallengeKey) -> str | None:
        ...

    def delete(self, key: ChallengeKey) -> None:
        ...


class InMemoryChallengeStore:
    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._items: dict[ChallengeKey, tuple[str, float]] = {}

    def _live(self, entry: tuple[str, float] | None) -> str | None:
        if entry is None:
            return None
        challenge, issued_at = entry
        if self._ttl is not None and self._clock() - issued_at > self._ttl:
            return None
        return challenge

    def set(self, key: ChallengeKey, challenge: str) -> None:
        with self._lock:
            self._items[key] = (challenge, self._clock())

    def get(self, key: ChallengeKey) -> str | None:
        with self._lock:
            return self._live(self._items.get(key))

    def pop(self, key: ChallengeKey) -> str | None:
        with self._lock:
            return self._live(self._items.pop(key, None))

    def delete(self, key: ChallengeKey) -> None:
        with self._lock:
            self._items.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

"""Client session state and per-action busy locks."""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from .errors import ActionInProgress
from .logging import get_logger
from .models import Actor

logger = get_logger(__name__)


@dataclass
class Session:
    """Bearer token and signed-in user; the client's only authentication state."""

    token: str | None = None
    user: Actor | None = None
    on_expired: Callable[[], None] | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    def sign_in(self, token: str, user: Actor | None = None) -> None:
        self.token = token
        self.user = user

    def bearer_token(self) -> str | None:
        return self.token

    def clear(self) -> None:
        """Drop the token and user, then send the user back to the entry screen."""

        had_token = self.token is not None
        self.token = None
        self.user = None
        if had_token:
            logger.info("session_cleared")
        if self.on_expired is not None:
            self.on_expired()


@dataclass
class ActionLocks:
    """Re-entrancy guard keyed by action and record, never global."""

    _busy: set[Hashable] = field(default_factory=set)

    def is_busy(self, key: Hashable) -> bool:
        return key in self._busy

    @property
    def busy(self) -> frozenset[Hashable]:
        return frozenset(self._busy)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold ``key`` for the duration of one round trip."""

        if key in self._busy:
            raise ActionInProgress(f"{key!r} is already in progress.")
        self._busy.add(key)
        try:
            yield
        finally:
            self._busy.discard(key)

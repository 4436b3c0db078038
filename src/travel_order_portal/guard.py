"""Unsaved-changes guard for draft edit surfaces.

The guard is a UX safeguard only. It never protects data on the server: a
closed process or a forced navigation still loses in-memory edits.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .logging import get_logger

logger = get_logger(__name__)


class NavigationChoice(str, Enum):
    """Answer to the Leave / Stay confirmation."""

    LEAVE = "leave"
    STAY = "stay"


LEAVE_PROMPT = "You have unsaved changes. Leave this page and discard them?"


@dataclass(frozen=True)
class BlockingRecord:
    path: str
    is_dirty: bool


class UnsavedChangesGuard:
    """Hold at most one blocking edit and decide whether navigation may proceed.

    Each navigation surface is handed the same guard instance; there is no
    module-level singleton.
    """

    def __init__(self) -> None:
        self._blocking: BlockingRecord | None = None

    @property
    def blocking(self) -> BlockingRecord | None:
        return self._blocking

    @property
    def is_dirty(self) -> bool:
        return self._blocking is not None and self._blocking.is_dirty

    def set_blocking(self, path: str, is_dirty: bool) -> None:
        """Register a dirty edit surface at ``path``, or deregister a clean one."""

        if is_dirty:
            self._blocking = BlockingRecord(path=path, is_dirty=True)
        elif self._blocking is not None and self._blocking.path == path:
            self._blocking = None

    def clear(self) -> None:
        self._blocking = None

    def needs_confirmation(self, target_path: str) -> bool:
        return self.is_dirty and self._blocking is not None and self._blocking.path != target_path

    def confirm_navigation(
        self,
        target_path: str,
        ask: Callable[[str], NavigationChoice],
    ) -> bool:
        """Return whether navigation to ``target_path`` may proceed.

        ``ask`` shows the Leave / Stay prompt and is only called when a dirty
        edit would be abandoned. Leave clears the block; Stay keeps it.
        """

        if not self.needs_confirmation(target_path):
            return True
        choice = ask(LEAVE_PROMPT)
        if choice == NavigationChoice.LEAVE:
            logger.info(
                "unsaved_changes_discarded",
                path=self._blocking.path if self._blocking else None,
                target=target_path,
            )
            self._blocking = None
            return True
        return False

    def before_unload(self) -> bool:
        """True when a window unload must be prevented for the dirty edit."""

        return self.is_dirty

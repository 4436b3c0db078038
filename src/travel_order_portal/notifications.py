"""Transient user notices raised by client controllers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from .errors import PortalError
from .logging import get_logger

logger = get_logger(__name__)


class NoticeLevel(StrEnum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    """A short message shown to the user and then dismissed."""

    level: NoticeLevel
    message: str
    code: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class NoticeBoard:
    """Collect notices for display; every notice is also logged."""

    notices: list[Notice] = field(default_factory=list)

    def push(self, level: NoticeLevel, message: str, code: str | None = None) -> Notice:
        notice = Notice(level=level, message=message, code=code)
        self.notices.append(notice)
        log = logger.error if level == NoticeLevel.ERROR else logger.info
        log("notice", level=level.value, message=message, code=code)
        return notice

    def success(self, message: str) -> Notice:
        return self.push(NoticeLevel.SUCCESS, message)

    def info(self, message: str) -> Notice:
        return self.push(NoticeLevel.INFO, message)

    def warning(self, message: str, code: str | None = None) -> Notice:
        return self.push(NoticeLevel.WARNING, message, code)

    def error(self, message: str, code: str | None = None) -> Notice:
        return self.push(NoticeLevel.ERROR, message, code)

    def from_error(self, exc: PortalError) -> Notice:
        return self.error(exc.message, exc.code)

    @property
    def latest(self) -> Notice | None:
        return self.notices[-1] if self.notices else None

    def dismiss(self, notice: Notice) -> None:
        if notice in self.notices:
            self.notices.remove(notice)

    def clear(self) -> None:
        self.notices.clear()

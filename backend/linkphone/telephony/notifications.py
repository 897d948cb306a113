"""
The Link Phone - User Notices

User-facing messages raised by a phone widget ("Phone Ready", "Call Logged",
"Call Not Logged", friendly errors). The HTTP layer drains them for display.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class NoticeVariant(str, Enum):
    DEFAULT = "default"
    WARNING = "warning"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class Notice:
    title: str
    description: str
    variant: NoticeVariant = NoticeVariant.DEFAULT
    code: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "variant": self.variant.value,
            "code": self.code,
            "created_at": self.created_at.isoformat() + "Z",
        }


_LOG_LEVELS = {
    NoticeVariant.DEFAULT: logging.INFO,
    NoticeVariant.WARNING: logging.WARNING,
    NoticeVariant.DESTRUCTIVE: logging.WARNING,
}


class NoticeBoard:
    """
    Bounded FIFO of notices for one phone widget.

    Oldest notices are dropped once ``max_notices`` is reached.
    """

    def __init__(self, max_notices: int = 50):
        self._notices: Deque[Notice] = deque(maxlen=max_notices)

    def __len__(self) -> int:
        return len(self._notices)

    def push(
        self,
        title: str,
        description: str,
        variant: NoticeVariant = NoticeVariant.DEFAULT,
        code: Optional[str] = None,
    ) -> Notice:
        notice = Notice(title=title, description=description, variant=variant, code=code)
        self._notices.append(notice)
        logger.log(_LOG_LEVELS[variant], "Notice: %s - %s", title, description)
        return notice

    def info(self, title: str, description: str) -> Notice:
        return self.push(title, description, NoticeVariant.DEFAULT)

    def warning(self, title: str, description: str) -> Notice:
        return self.push(title, description, NoticeVariant.WARNING)

    def error(self, title: str, description: str, code: Optional[str] = None) -> Notice:
        return self.push(title, description, NoticeVariant.DESTRUCTIVE, code=code)

    def peek(self) -> List[Notice]:
        """All pending notices, oldest first, without consuming them."""
        return list(self._notices)

    def latest(self) -> Optional[Notice]:
        return self._notices[-1] if self._notices else None

    def drain(self) -> List[Notice]:
        """Return and clear all pending notices."""
        notices = list(self._notices)
        self._notices.clear()
        return notices

# Import all models so Alembic can discover them via Base.metadata
from .coverage_interval import LessonCoverageInterval
from .lesson_attempt import LessonAttempt
from .seek_event import SeekEvent
from .watch_segment import WatchSegment
from .watch_session import WatchSession

__all__ = [
    "LessonAttempt",
    "LessonCoverageInterval",
    "SeekEvent",
    "WatchSegment",
    "WatchSession",
]

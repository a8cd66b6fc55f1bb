import enum

from sqlalchemy import Enum as SAEnum


class AttemptStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class SeekReason(str, enum.Enum):
    """Well-known seek causes. ``SeekEvent.reason`` stays free text."""

    USER_SEEK = "user_seek"
    POLICY_VIOLATION = "policy_violation"


# Native enum type on PostgreSQL, VARCHAR + CHECK on other backends.
attempt_status_enum = SAEnum(AttemptStatus, name="lesson_attempt_status")

"""Domain exception classes for the watch-progress service.

These are raised by service-layer code and caught by controllers
to map to appropriate HTTP responses. A retried segment write is not
an error and has no exception here: the recorder reports it as ignored.
"""


class WatchSessionNotFoundError(Exception):
    """Raised when a watch session cannot be found by ID."""

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        super().__init__(f"Watch session not found: {session_id}")


class LessonAttemptNotFoundError(Exception):
    def __init__(self, attempt_id: str = ""):
        self.attempt_id = attempt_id
        super().__init__(f"Lesson attempt not found: {attempt_id}")


class ProgressNotFoundError(Exception):
    """Raised when a user has no attempt at all for a lesson."""

    def __init__(self, user_id: str = "", lesson_id: str = ""):
        self.user_id = user_id
        self.lesson_id = lesson_id
        super().__init__(f"No progress found for user {user_id} on lesson {lesson_id}")


class AggregationConflictError(Exception):
    """Raised when concurrent writers keep winning the race on an attempt row.

    Transient: the caller should retry the whole request.
    """

    def __init__(self, attempt_id: str = "", retries: int = 0):
        self.attempt_id = attempt_id
        self.retries = retries
        super().__init__(
            f"Aggregation conflict on lesson attempt {attempt_id} after {retries} retries"
        )


class CreditTargetMismatchError(Exception):
    """Raised when crediting targets an attempt of another user or lesson."""

    def __init__(self, attempt_id: str = ""):
        self.attempt_id = attempt_id
        super().__init__(f"Attempt {attempt_id} does not belong to this user and lesson")

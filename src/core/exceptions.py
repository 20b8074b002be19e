"""Custom exception classes for the classroom backend.

This module defines application-specific exceptions following Google Python
Style Guide.
"""

from typing import Optional


class ClassroomError(Exception):
    """Base exception for all classroom backend errors."""

    pass


class NotFoundError(ClassroomError):
    """Raised when a referenced document does not exist."""

    kind = "Document"

    def __init__(self, identifier: str, message: Optional[str] = None):
        """Initialize the exception.

        Args:
            identifier: The ID or path of the missing document.
            message: Optional user-facing message overriding the default.
        """
        self.identifier = identifier
        super().__init__(message or f"{self.kind} '{identifier}' not found")


class DocumentNotFoundError(NotFoundError):
    """Raised when an update targets a document that does not exist."""

    kind = "Document"


class ClassNotFoundError(NotFoundError):
    """Raised when a class cannot be found."""

    kind = "Class"


class AssignmentNotFoundError(NotFoundError):
    """Raised when a quiz assignment cannot be found."""

    kind = "Assignment"


class AttemptNotFoundError(NotFoundError):
    """Raised when a student has no attempt for an assignment."""

    kind = "Attempt"


class UserNotFoundError(NotFoundError):
    """Raised when a user document cannot be found."""

    kind = "User"


class ValidationError(ClassroomError):
    """Raised when input is rejected before any store call."""

    pass


class AttemptClosedError(ClassroomError):
    """Raised when a graded attempt would be modified."""

    def __init__(self, path: str):
        self.path = path
        super().__init__("This attempt has already been submitted and graded")


class TransactionConflict(ClassroomError):
    """Raised at commit time when a document read by the transaction changed.

    Internal signal: the transaction runner catches it and retries.
    """

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Document '{path}' changed during the transaction")


class ConflictRetryExhaustedError(ClassroomError):
    """Raised when a transaction kept conflicting past its retry budget."""

    def __init__(self, attempts: int):
        """Initialize the exception.

        Args:
            attempts: Number of attempts made before giving up.
        """
        self.attempts = attempts
        super().__init__(
            f"Too many concurrent updates (gave up after {attempts} attempts), please retry"
        )


class BatchLimitExceededError(ClassroomError):
    """Raised when more writes are staged than one commit may carry."""

    pass


class PartialCascadeIncompleteError(ClassroomError):
    """Raised when a chunked cascade delete stops before finishing.

    Rows deleted so far stay deleted; leftovers are orphaned mirror rows that
    the index sweep can reconcile later.
    """

    def __init__(self, parent_path: str, deleted: int):
        """Initialize the exception.

        Args:
            parent_path: Path of the document whose cascade was interrupted.
            deleted: Number of child documents deleted before the failure.
        """
        self.parent_path = parent_path
        self.deleted = deleted
        super().__init__(
            f"Cascade delete of '{parent_path}' interrupted after {deleted} deletions"
        )

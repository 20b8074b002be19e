"""User document utilities.

Authentication lives in the external identity service. This module keeps the
``users/{uid}`` documents that invitations resolve emails against.
"""

import logging
from typing import Optional

from core.exceptions import UserNotFoundError, ValidationError
from schemas.user import User
from utils.document_store import DocumentStore
from utils.field_values import SERVER_TIMESTAMP

logger = logging.getLogger(__name__)


def user_path(uid: str) -> str:
    return f"users/{uid}"


def canonical_email(email: Optional[str]) -> str:
    """Trimmed, lowercased email used as the lookup key."""
    return (email or "").strip().lower()


class UserManager:
    """Manages user documents."""

    def __init__(self, store: DocumentStore):
        """Initialize UserManager.

        Args:
            store: Document store.
        """
        self.store = store

    def upsert_user(
        self,
        uid: str,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        school_id: Optional[str] = None,
    ) -> User:
        """Create or merge a user document, keeping ``emailLower`` in sync.

        Raises:
            ValidationError: If the email is empty.
        """
        clean = (email or "").strip()
        if not clean:
            raise ValidationError("Email is required")
        fields = {
            "uid": uid,
            "email": clean,
            "emailLower": canonical_email(clean),
            "firstName": first_name,
            "lastName": last_name,
            "schoolId": school_id,
            "updatedAt": SERVER_TIMESTAMP,
        }
        self.store.set(
            user_path(uid),
            {key: value for key, value in fields.items() if value is not None},
            merge=True,
        )
        return self.get_user(uid)

    def get_user(self, uid: str) -> User:
        snapshot = self.store.get(user_path(uid))
        if not snapshot.exists:
            raise UserNotFoundError(uid)
        return User.model_validate({**snapshot.to_dict(), "uid": snapshot.id})

    def find_user(self, uid: str) -> Optional[User]:
        try:
            return self.get_user(uid)
        except UserNotFoundError:
            return None

    def find_user_by_email(self, email: str) -> Optional[User]:
        """Look a user up by email.

        Matches the canonical ``emailLower`` field first, then falls back to an
        exact match on ``email`` for rows written before ``emailLower`` existed.
        """
        clean = (email or "").strip()
        if not clean:
            raise ValidationError("Email is required")
        users = self.store.query("users")
        matches = users.where("emailLower", "==", canonical_email(clean)).limit(1).get()
        if not matches:
            matches = users.where("email", "==", clean).limit(1).get()
        if not matches:
            return None
        snapshot = matches[0]
        return User.model_validate({**snapshot.to_dict(), "uid": snapshot.id})

    def backfill_email_lower(self) -> int:
        """Write ``emailLower`` on every user document missing it.

        Returns:
            Number of documents updated.
        """
        stale = [
            snapshot
            for snapshot in self.store.query("users").get()
            if snapshot.get("email") and not snapshot.get("emailLower")
        ]
        for start in range(0, len(stale), self.store.max_batch_writes):
            batch = self.store.batch()
            for snapshot in stale[start:start + self.store.max_batch_writes]:
                batch.update(
                    snapshot.path, {"emailLower": canonical_email(snapshot.get("email"))}
                )
            batch.commit()
        if stale:
            logger.info("Backfilled emailLower on %d user documents", len(stale))
        return len(stale)

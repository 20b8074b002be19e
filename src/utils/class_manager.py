"""Class management utilities.

``ClassManager`` is the only writer of a class's ``counts.*`` fields and of
the per-user ``users/{uid}/classIndex/{classId}`` mirrors. Every membership
change updates the member record, the counters and the mirror in one atomic
commit, so the invariants below hold between completed operations:

- ``counts.students`` == number of active members with role ``student``
- ``counts.instructors`` == number of active members with role ``instructor``
  or ``ta``
- a mirror row exists for (uid, classId) iff an active member exists
"""

import hashlib
import logging
from typing import Any, Dict, List, Optional

from config import DEFAULT_CONTENT_VERSION, INSTRUCTOR_ROLES, ROLES
from core.exceptions import ClassNotFoundError, ValidationError
from schemas.class_schema import (
    ClassCounts,
    ClassMember,
    ClassSection,
    MemberWithUser,
    MyClass,
    PendingInvite,
    Role,
    UserClassIndex,
)
from utils.assignment_manager import AssignmentManager, assignments_path
from utils.document_store import DocumentSnapshot, DocumentStore, Transaction, new_id
from utils.field_values import SERVER_TIMESTAMP, Increment
from utils.user_manager import UserManager, canonical_email

logger = logging.getLogger(__name__)


def class_path(class_id: str) -> str:
    return f"classes/{class_id}"


def members_path(class_id: str) -> str:
    return f"classes/{class_id}/members"


def member_path(class_id: str, uid: str) -> str:
    return f"classes/{class_id}/members/{uid}"


def invites_path(class_id: str) -> str:
    return f"classes/{class_id}/invites"


def index_path(uid: str, class_id: str) -> str:
    return f"users/{uid}/classIndex/{class_id}"


def counter_field(role: Optional[str]) -> str:
    """Counter bucket for a role: students, or instructors for instructor/ta."""
    return "counts.students" if role == "student" else "counts.instructors"


def invite_id_for_email(email: str) -> str:
    """Stable invite id so concurrent invites for one email hit one document."""
    return hashlib.sha1(canonical_email(email).encode("utf-8")).hexdigest()[:20]


def _class_from(snapshot: DocumentSnapshot) -> ClassSection:
    return ClassSection.model_validate({**snapshot.to_dict(), "id": snapshot.id})


def _is_active(member: DocumentSnapshot) -> bool:
    return member.exists and member.get("status", "active") == "active"


class ClassManager:
    """Manages classes, memberships, mirrors and pending invites."""

    def __init__(self, store: DocumentStore, user_manager: Optional[UserManager] = None):
        """Initialize ClassManager.

        Args:
            store: Document store.
            user_manager: Used to resolve invitee emails. Defaults to one on
                the same store.
        """
        self.store = store
        self.user_manager = user_manager or UserManager(store)

    # --- Classes ---

    def create_class(self, course_id: str, title: str, instructor_id: str) -> str:
        """Create a class with its instructor as the first member.

        Returns:
            The new class id.

        Raises:
            ValidationError: If the title is empty.
        """
        clean_title = (title or "").strip()
        if not clean_title:
            raise ValidationError("Class title cannot be empty")

        course = self.store.get(f"courses/{course_id}") if course_id else None
        content_version = (
            course.get("contentVersion") if course is not None and course.exists else None
        ) or DEFAULT_CONTENT_VERSION

        class_id = new_id()
        section = ClassSection(
            course_id=course_id,
            content_version=content_version,
            instructor_id=instructor_id,
            title=clean_title,
            counts=ClassCounts(students=0, instructors=1),
        )
        batch = self.store.batch()
        batch.set(
            class_path(class_id),
            {
                **section.to_document(),
                "id": class_id,
                "createdAt": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
            },
        )
        batch.set(
            member_path(class_id, instructor_id),
            {
                "uid": instructor_id,
                "role": "instructor",
                "status": "active",
                "enrolledAt": SERVER_TIMESTAMP,
            },
        )
        batch.set(
            index_path(instructor_id, class_id),
            {
                "classId": class_id,
                "title": clean_title,
                "role": "instructor",
                "status": "active",
                "updatedAt": SERVER_TIMESTAMP,
            },
        )
        batch.commit()
        logger.info("Created class %s for instructor %s", class_id, instructor_id)
        return class_id

    def get_class(self, class_id: str) -> ClassSection:
        snapshot = self.store.get(class_path(class_id))
        if not snapshot.exists:
            raise ClassNotFoundError(class_id)
        return _class_from(snapshot)

    def list_classes_for_instructor(self, uid: str) -> List[ClassSection]:
        snapshots = (
            self.store.query("classes")
            .where("instructorId", "==", uid)
            .order_by("createdAt", "desc")
            .get()
        )
        return [_class_from(snapshot) for snapshot in snapshots]

    # --- Membership mutations ---

    def add_or_update_member(self, class_id: str, uid: str, requested_role: Role) -> Role:
        """Add a member or change its role, keeping counters and mirror in step.

        An existing instructor is never demoted: requesting any other role
        leaves the role as ``instructor``.

        Args:
            class_id: Class ID.
            uid: Member user ID.
            requested_role: Role asked for by the caller.

        Returns:
            The effective role after the update.

        Raises:
            ValidationError: If the role is unknown.
            ClassNotFoundError: If the class does not exist.
        """
        if requested_role not in ROLES:
            raise ValidationError(f"Unknown role: {requested_role}")

        def body(tx: Transaction) -> Role:
            class_doc = tx.get(class_path(class_id))
            member_doc = tx.get(member_path(class_id, uid))
            if not class_doc.exists:
                raise ClassNotFoundError(class_id)

            previous = member_doc.to_dict() if member_doc.exists else None
            previous_role = previous.get("role") if previous else None
            was_active = bool(previous) and previous.get("status", "active") == "active"

            role: Role = requested_role
            if previous_role == "instructor" and requested_role != "instructor":
                role = "instructor"

            counter_updates: Dict[str, Any] = {}
            if not was_active:
                counter_updates[counter_field(role)] = Increment(1)
            elif counter_field(previous_role) != counter_field(role):
                counter_updates[counter_field(previous_role)] = Increment(-1)
                counter_updates[counter_field(role)] = Increment(1)
            if counter_updates:
                tx.update(
                    class_path(class_id), {**counter_updates, "updatedAt": SERVER_TIMESTAMP}
                )

            enrolled_at = (previous or {}).get("enrolledAt") or SERVER_TIMESTAMP
            tx.set(
                member_path(class_id, uid),
                {"uid": uid, "role": role, "status": "active", "enrolledAt": enrolled_at},
                merge=True,
            )
            tx.set(
                index_path(uid, class_id),
                {
                    "classId": class_id,
                    "title": class_doc.get("title") or "",
                    "role": role,
                    "status": "active",
                    "updatedAt": SERVER_TIMESTAMP,
                },
                merge=True,
            )
            return role

        role = self.store.run_transaction(body)
        logger.info("Member %s of class %s is now %s", uid, class_id, role)
        return role

    def remove_member(self, class_id: str, uid: str) -> bool:
        """Remove a member, decrement its counter and drop its mirror.

        Reads only the member document, so two concurrent removals of the same
        member serialize and decrement once.

        Returns:
            True if a member was removed, False if there was none.
        """

        def body(tx: Transaction) -> bool:
            member_doc = tx.get(member_path(class_id, uid))
            if not member_doc.exists:
                return False
            tx.delete(member_path(class_id, uid))
            class_update: Dict[str, Any] = {"updatedAt": SERVER_TIMESTAMP}
            if member_doc.get("status", "active") == "active":
                class_update[counter_field(member_doc.get("role"))] = Increment(-1)
            tx.update(class_path(class_id), class_update)
            tx.delete(index_path(uid, class_id))
            return True

        removed = self.store.run_transaction(body)
        if removed:
            logger.info("Removed member %s from class %s", uid, class_id)
        return removed

    def delete_class(self, class_id: str) -> None:
        """Delete a class after cascading its members, invites and assignments.

        Children go first, in bounded batches, and the class document last, so
        an interrupted cascade never leaves a class with invalid members behind,
        only orphaned mirror rows (see ``sweep_orphaned_index_rows``).

        Raises:
            PartialCascadeIncompleteError: If a chunk fails midway.
        """
        parent = class_path(class_id)
        removed = self.store.delete_in_chunks(
            self.store.query(members_path(class_id)),
            parent,
            related=lambda member: [index_path(member.id, class_id)],
            writes_per_doc=2,
        )
        self.store.delete_in_chunks(self.store.query(invites_path(class_id)), parent)
        assignments = AssignmentManager(self.store)
        for assignment in self.store.query(assignments_path(class_id)).get():
            assignments.delete_assignment(class_id, assignment.id)
        self.store.delete(parent)
        logger.info("Deleted class %s (%d members)", class_id, removed)

    # --- Invitations ---

    def invite_by_email_or_create_pending(
        self,
        class_id: str,
        email: str,
        role: Role = "student",
        invited_by: Optional[str] = None,
    ) -> Optional[str]:
        """Add the user owning ``email``, or record a pending invite.

        Self-invite checks are the caller's job.

        Returns:
            The member uid, or None when a pending invite was recorded.

        Raises:
            ValidationError: If the email is empty or the role unknown.
            ClassNotFoundError: If the class does not exist.
        """
        clean = (email or "").strip()
        if not clean:
            raise ValidationError("Email is required")
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")
        lower = canonical_email(clean)

        user = self.user_manager.find_user_by_email(clean)
        if user is not None:
            self.add_or_update_member(class_id, user.uid, role)
            stale = self.store.query(invites_path(class_id)).where("email", "==", lower).get()
            if stale:
                batch = self.store.batch()
                for invite in stale:
                    batch.delete(invite.path)
                batch.commit()
            return user.uid

        if not self.store.get(class_path(class_id)).exists:
            raise ClassNotFoundError(class_id)
        existing = (
            self.store.query(invites_path(class_id))
            .where("email", "==", lower)
            .limit(1)
            .get()
        )
        invite_id = existing[0].id if existing else invite_id_for_email(lower)
        batch = self.store.batch()
        batch.set(
            f"{invites_path(class_id)}/{invite_id}",
            {
                "email": lower,
                "role": role,
                "status": "pending",
                "createdAt": SERVER_TIMESTAMP,
                "invitedBy": invited_by or "",
            },
            merge=True,
        )
        batch.update(class_path(class_id), {"updatedAt": SERVER_TIMESTAMP})
        batch.commit()
        logger.info("Recorded pending invite %s for class %s", invite_id, class_id)
        return None

    def cancel_invite(self, class_id: str, invite_id: str) -> None:
        self.store.delete(f"{invites_path(class_id)}/{invite_id}")

    def claim_pending_invites(self, uid: str, email: str) -> List[str]:
        """Turn every pending invite for ``email`` into a membership for ``uid``.

        Called once the invited email belongs to a registered user.

        Returns:
            Ids of the classes joined.
        """
        lower = canonical_email(email)
        if not lower:
            raise ValidationError("Email is required")
        joined = []
        invites = (
            self.store.collection_group("invites")
            .where("email", "==", lower)
            .where("status", "==", "pending")
            .get()
        )
        for invite in invites:
            class_id = invite.path.split("/")[1]
            try:
                self.add_or_update_member(class_id, uid, invite.get("role") or "student")
            except ClassNotFoundError:
                logger.warning("Dropping invite %s for deleted class %s", invite.id, class_id)
            else:
                joined.append(class_id)
            self.store.delete(invite.path)
        if joined:
            logger.info("User %s claimed invites to %s", uid, ", ".join(joined))
        return joined

    # --- Reads ---

    def member_role(self, class_id: str, uid: Optional[str]) -> Optional[Role]:
        if not uid:
            return None
        snapshot = self.store.get(member_path(class_id, uid))
        if not snapshot.exists or snapshot.get("status", "active") != "active":
            return None
        return snapshot.get("role")

    def is_staff(self, class_id: str, uid: Optional[str]) -> bool:
        return self.member_role(class_id, uid) in INSTRUCTOR_ROLES

    def list_members(self, class_id: str) -> List[ClassMember]:
        snapshots = self.store.query(members_path(class_id)).order_by("role").get()
        return [
            ClassMember.model_validate({**snapshot.to_dict(), "uid": snapshot.id})
            for snapshot in snapshots
        ]

    def list_members_with_users(self, class_id: str) -> List[MemberWithUser]:
        members = self.list_members(class_id)
        users = self.store.get_all([f"users/{member.uid}" for member in members])
        results = []
        for member, user in zip(members, users):
            results.append(
                MemberWithUser(
                    **member.model_dump(),
                    user={**user.to_dict(), "uid": user.id} if user.exists else None,
                )
            )
        return results

    def list_my_classes(self, uid: str) -> List[MyClass]:
        """Classes of ``uid`` through the mirror index, newest activity first."""
        rows = [
            UserClassIndex.model_validate(snapshot.to_dict())
            for snapshot in self.store.query(f"users/{uid}/classIndex")
            .order_by("updatedAt", "desc")
            .get()
        ]
        classes = self.store.get_all([class_path(row.class_id) for row in rows])
        results = []
        for row, snapshot in zip(rows, classes):
            if not snapshot.exists:
                continue
            results.append(
                MyClass.model_validate(
                    {**snapshot.to_dict(), "id": snapshot.id, "role": row.role}
                )
            )
        return results

    def list_pending_invites(self, class_id: str) -> List[PendingInvite]:
        snapshots = (
            self.store.query(invites_path(class_id)).order_by("createdAt", "desc").get()
        )
        return [
            PendingInvite.model_validate({**snapshot.to_dict(), "id": snapshot.id})
            for snapshot in snapshots
        ]

    # --- Reconciliation ---

    def sweep_orphaned_index_rows(self) -> int:
        """Delete mirror rows with no active member behind them.

        Leftovers of interrupted cascades end up here.

        Returns:
            Number of mirror rows deleted.
        """
        rows = self.store.collection_group("classIndex").get()
        if not rows:
            return 0
        member_paths = [
            member_path(row.get("classId") or row.id, row.path.split("/")[1])
            for row in rows
        ]
        members = self.store.get_all(member_paths)
        candidates = [
            (row.path, path)
            for row, path, member in zip(rows, member_paths, members)
            if not _is_active(member)
        ]

        def delete_if_orphaned(row_path: str, member_doc_path: str) -> bool:
            def body(tx: Transaction) -> bool:
                row = tx.get(row_path)
                member = tx.get(member_doc_path)
                if not row.exists or _is_active(member):
                    return False
                tx.delete(row_path)
                return True

            return self.store.run_transaction(body)

        # Re-checked one by one; a member re-added since the scan keeps its row
        swept = sum(
            1 for row_path, member_doc_path in candidates
            if delete_if_orphaned(row_path, member_doc_path)
        )
        if swept:
            logger.warning("Swept %d orphaned class index rows", swept)
        return swept

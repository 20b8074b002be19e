import pytest

from conftest import counts
from core.exceptions import ClassNotFoundError, ValidationError
from utils.class_manager import index_path, invite_id_for_email, invites_path, member_path


def test_invite_registered_user_adds_member(store, users, classes, class_id):
    users.upsert_user("u1", "Student@Example.com")
    uid = classes.invite_by_email_or_create_pending(class_id, "  student@example.COM ")
    assert uid == "u1"
    assert classes.member_role(class_id, "u1") == "student"
    assert counts(store, class_id)["students"] == 1
    assert store.query(invites_path(class_id)).get() == []


def test_invite_unknown_email_creates_pending(store, classes, class_id):
    uid = classes.invite_by_email_or_create_pending(
        class_id, "New@Example.com", "ta", invited_by="prof"
    )
    assert uid is None
    invites = classes.list_pending_invites(class_id)
    assert len(invites) == 1
    assert invites[0].email == "new@example.com"
    assert invites[0].role == "ta"
    assert invites[0].invited_by == "prof"
    assert invites[0].id == invite_id_for_email("new@example.com")
    assert counts(store, class_id) == {"students": 0, "instructors": 1}


def test_reinviting_same_email_keeps_one_invite(classes, class_id):
    classes.invite_by_email_or_create_pending(class_id, "new@example.com", "student")
    classes.invite_by_email_or_create_pending(class_id, "NEW@example.com", "ta")
    invites = classes.list_pending_invites(class_id)
    assert len(invites) == 1
    assert invites[0].role == "ta"


def test_invite_falls_back_to_exact_email_match(store, classes, class_id):
    # Legacy user document without emailLower
    store.set("users/legacy", {"email": "Legacy@Example.com"})
    assert classes.invite_by_email_or_create_pending(class_id, "Legacy@Example.com") == "legacy"


def test_invite_requires_email(classes, class_id):
    with pytest.raises(ValidationError):
        classes.invite_by_email_or_create_pending(class_id, "   ")


def test_invite_to_missing_class(users, classes):
    with pytest.raises(ClassNotFoundError):
        classes.invite_by_email_or_create_pending("nope", "someone@example.com")
    users.upsert_user("u1", "known@example.com")
    with pytest.raises(ClassNotFoundError):
        classes.invite_by_email_or_create_pending("nope", "known@example.com")


def test_invite_existing_member_updates_role(store, users, classes, class_id):
    users.upsert_user("u1", "u1@example.com")
    classes.invite_by_email_or_create_pending(class_id, "u1@example.com", "student")
    classes.invite_by_email_or_create_pending(class_id, "u1@example.com", "ta")
    assert classes.member_role(class_id, "u1") == "ta"
    assert counts(store, class_id) == {"students": 0, "instructors": 2}


def test_cancel_invite(classes, class_id):
    classes.invite_by_email_or_create_pending(class_id, "new@example.com")
    invite = classes.list_pending_invites(class_id)[0]
    classes.cancel_invite(class_id, invite.id)
    assert classes.list_pending_invites(class_id) == []


def test_claim_pending_invites(store, users, classes, class_id):
    other = classes.create_class("course-2", "Other", "prof2")
    classes.invite_by_email_or_create_pending(class_id, "late@example.com", "student")
    classes.invite_by_email_or_create_pending(other, "late@example.com", "ta")

    users.upsert_user("late", "Late@Example.com")
    joined = classes.claim_pending_invites("late", "Late@Example.com")

    assert sorted(joined) == sorted([class_id, other])
    assert classes.member_role(class_id, "late") == "student"
    assert classes.member_role(other, "late") == "ta"
    assert store.get(index_path("late", other)).exists
    assert counts(store, class_id)["students"] == 1
    assert counts(store, other)["instructors"] == 2
    assert classes.list_pending_invites(class_id) == []
    assert classes.claim_pending_invites("late", "late@example.com") == []


def test_claim_skips_deleted_class(store, classes, class_id):
    store.set(
        f"{invites_path('gone')}/{invite_id_for_email('late@example.com')}",
        {"email": "late@example.com", "role": "student", "status": "pending"},
    )
    classes.invite_by_email_or_create_pending(class_id, "late@example.com")
    assert classes.claim_pending_invites("late", "late@example.com") == [class_id]
    assert store.collection_group("invites").get() == []
    assert not store.get(member_path("gone", "late")).exists

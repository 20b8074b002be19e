import pytest

from core.exceptions import UserNotFoundError, ValidationError
from utils.user_manager import canonical_email


def test_canonical_email():
    assert canonical_email("  Ana@Example.COM ") == "ana@example.com"
    assert canonical_email(None) == ""


def test_upsert_user_sets_email_lower(users):
    user = users.upsert_user("u1", " Ana@Example.com ", first_name="Ana", last_name="Diaz")
    assert user.uid == "u1"
    assert user.email == "Ana@Example.com"
    assert user.email_lower == "ana@example.com"
    assert user.display_name == "Ana Diaz"


def test_upsert_user_merges(users):
    users.upsert_user("u1", "ana@example.com", first_name="Ana", school_id="S1")
    user = users.upsert_user("u1", "ana@example.com", last_name="Diaz")
    assert user.first_name == "Ana"
    assert user.last_name == "Diaz"
    assert user.school_id == "S1"


def test_upsert_user_requires_email(users):
    with pytest.raises(ValidationError):
        users.upsert_user("u1", "  ")


def test_get_user_missing(users):
    with pytest.raises(UserNotFoundError):
        users.get_user("nobody")
    assert users.find_user("nobody") is None


def test_find_user_by_email(store, users):
    users.upsert_user("u1", "Ana@Example.com")
    assert users.find_user_by_email("ana@EXAMPLE.com").uid == "u1"
    assert users.find_user_by_email("other@example.com") is None


def test_backfill_email_lower(store, users):
    store.set("users/a", {"email": "A@Example.com"})
    store.set("users/b", {"email": "b@example.com", "emailLower": "b@example.com"})
    store.set("users/c", {"firstName": "No email"})
    assert users.backfill_email_lower() == 1
    assert store.get("users/a").get("emailLower") == "a@example.com"
    assert users.backfill_email_lower() == 0

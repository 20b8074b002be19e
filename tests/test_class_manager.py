import threading

import pytest

from conftest import active_members, class_doc, counts
from core.exceptions import ClassNotFoundError, ValidationError
from utils.class_manager import ClassManager, counter_field, index_path, member_path
from utils.document_store import DocumentStore


def assert_consistent(store, class_id):
    """Counters match active members and mirrors exist exactly for them."""
    members = active_members(store, class_id)
    students = sum(1 for m in members if m["role"] == "student")
    staff = sum(1 for m in members if m["role"] in ("instructor", "ta"))
    assert counts(store, class_id) == {"students": students, "instructors": staff}
    for member in members:
        assert store.get(index_path(member["uid"], class_id)).exists
    mirrors = [
        row for row in store.collection_group("classIndex").get()
        if row.get("classId") == class_id
    ]
    assert len(mirrors) == len(members)


def test_counter_field():
    assert counter_field("student") == "counts.students"
    assert counter_field("ta") == "counts.instructors"
    assert counter_field("instructor") == "counts.instructors"


def test_create_class(store, classes, class_id):
    doc = class_doc(store, class_id)
    assert doc["title"] == "Intro to Finance"
    assert doc["instructorId"] == "prof"
    assert doc["contentVersion"] == 1
    assert doc["status"] == "active"
    assert doc["createdAt"]
    assert classes.member_role(class_id, "prof") == "instructor"
    assert_consistent(store, class_id)


def test_create_class_snapshots_course_version(store, classes):
    store.set("courses/fin", {"contentVersion": 7})
    class_id = classes.create_class("fin", "Finance", "prof")
    assert classes.get_class(class_id).content_version == 7


def test_create_class_requires_title(classes):
    with pytest.raises(ValidationError):
        classes.create_class("course-1", "   ", "prof")


def test_get_missing_class(classes):
    with pytest.raises(ClassNotFoundError):
        classes.get_class("nope")


def test_add_student(store, classes, class_id):
    assert classes.add_or_update_member(class_id, "s1", "student") == "student"
    assert counts(store, class_id) == {"students": 1, "instructors": 1}
    mirror = store.get(index_path("s1", class_id)).to_dict()
    assert mirror["role"] == "student"
    assert mirror["title"] == "Intro to Finance"
    assert_consistent(store, class_id)


def test_add_same_member_twice_counts_once(store, classes, class_id):
    classes.add_or_update_member(class_id, "s1", "student")
    classes.add_or_update_member(class_id, "s1", "student")
    assert counts(store, class_id)["students"] == 1


def test_promote_student_to_ta(store, classes, class_id):
    classes.add_or_update_member(class_id, "s1", "student")
    enrolled = store.get(member_path(class_id, "s1")).get("enrolledAt")
    assert classes.add_or_update_member(class_id, "s1", "ta") == "ta"
    assert counts(store, class_id) == {"students": 0, "instructors": 2}
    assert store.get(member_path(class_id, "s1")).get("enrolledAt") == enrolled
    assert store.get(index_path("s1", class_id)).get("role") == "ta"
    assert_consistent(store, class_id)


def test_instructor_is_never_demoted(store, classes, class_id):
    assert classes.add_or_update_member(class_id, "prof", "student") == "instructor"
    assert counts(store, class_id) == {"students": 0, "instructors": 1}
    assert classes.member_role(class_id, "prof") == "instructor"


def test_add_member_to_missing_class(store, classes):
    with pytest.raises(ClassNotFoundError):
        classes.add_or_update_member("nope", "s1", "student")
    assert not store.get(index_path("s1", "nope")).exists


def test_unknown_role_rejected(classes, class_id):
    with pytest.raises(ValidationError):
        classes.add_or_update_member(class_id, "s1", "admin")


def test_dropped_member_rejoins(store, classes, class_id):
    store.set(member_path(class_id, "s1"), {"uid": "s1", "role": "student", "status": "dropped"})
    classes.add_or_update_member(class_id, "s1", "student")
    assert counts(store, class_id)["students"] == 1
    assert store.get(member_path(class_id, "s1")).get("status") == "active"
    assert_consistent(store, class_id)


def test_remove_member(store, classes, class_id):
    classes.add_or_update_member(class_id, "s1", "student")
    assert classes.remove_member(class_id, "s1") is True
    assert counts(store, class_id)["students"] == 0
    assert not store.get(member_path(class_id, "s1")).exists
    assert not store.get(index_path("s1", class_id)).exists
    assert classes.remove_member(class_id, "s1") is False
    assert counts(store, class_id)["students"] == 0
    assert_consistent(store, class_id)


def test_remove_ta(store, classes, class_id):
    classes.add_or_update_member(class_id, "t1", "ta")
    classes.remove_member(class_id, "t1")
    assert counts(store, class_id) == {"students": 0, "instructors": 1}


def test_remove_dropped_member_does_not_decrement(store, classes, class_id):
    classes.add_or_update_member(class_id, "s1", "student")
    store.set(member_path(class_id, "s2"), {"uid": "s2", "role": "student", "status": "dropped"})
    classes.remove_member(class_id, "s2")
    assert counts(store, class_id)["students"] == 1


def test_concurrent_adds_keep_counters_exact(store, class_id):
    classes = ClassManager(DocumentStore(store.engine, max_attempts=50))
    errors = []

    def worker(uid, role):
        try:
            classes.add_or_update_member(class_id, uid, role)
        except Exception as exc:  # collected for the assertion below
            errors.append(exc)

    threads = [
        threading.Thread(target=worker, args=(f"s{i}", "student" if i % 3 else "ta"))
        for i in range(9)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    assert counts(store, class_id) == {"students": 6, "instructors": 4}
    assert_consistent(store, class_id)


def test_concurrent_removals_decrement_once(store, classes, class_id):
    classes.add_or_update_member(class_id, "s1", "student")
    results = []

    def worker():
        results.append(classes.remove_member(class_id, "s1"))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(results) == [False, False, False, True]
    assert counts(store, class_id)["students"] == 0


def test_list_members_with_users(store, users, classes, class_id):
    users.upsert_user("s1", "Ana@Example.com", first_name="Ana")
    classes.add_or_update_member(class_id, "s1", "student")
    classes.add_or_update_member(class_id, "s2", "student")
    rows = {row.uid: row for row in classes.list_members_with_users(class_id)}
    assert set(rows) == {"prof", "s1", "s2"}
    assert rows["s1"].user.first_name == "Ana"
    assert rows["s2"].user is None


def test_list_my_classes(classes):
    first = classes.create_class("c", "First", "prof")
    second = classes.create_class("c", "Second", "other")
    classes.add_or_update_member(second, "prof", "ta")
    mine = {row.id: row.role for row in classes.list_my_classes("prof")}
    assert mine == {first: "instructor", second: "ta"}
    assert [c.id for c in classes.list_classes_for_instructor("prof")] == [first]


def test_is_staff(classes, class_id):
    classes.add_or_update_member(class_id, "s1", "student")
    classes.add_or_update_member(class_id, "t1", "ta")
    assert classes.is_staff(class_id, "prof")
    assert classes.is_staff(class_id, "t1")
    assert not classes.is_staff(class_id, "s1")
    assert not classes.is_staff(class_id, "stranger")
    assert not classes.is_staff(class_id, None)


def test_delete_class_cascades(store, classes, assignments, attempts, class_id):
    for i in range(5):
        classes.add_or_update_member(class_id, f"s{i}", "student")
    classes.invite_by_email_or_create_pending(class_id, "late@example.com")
    assignment_id = assignments.create_quick_quiz(class_id, "prof")
    attempts.start_attempt_if_needed(class_id, assignment_id, "s1")

    classes.delete_class(class_id)

    assert not store.get(f"classes/{class_id}").exists
    assert store.query(f"classes/{class_id}/members").get() == []
    assert store.query(f"classes/{class_id}/invites").get() == []
    assert store.query(f"classes/{class_id}/assignments").get() == []
    assert store.query(f"classes/{class_id}/assignments/{assignment_id}/attempts").get() == []
    assert store.collection_group("classIndex").get() == []


def test_delete_large_class_respects_batch_limit(store, class_id):
    small = ClassManager(DocumentStore(store.engine, max_batch_writes=4))
    for i in range(7):
        small.add_or_update_member(class_id, f"s{i}", "student")
    small.delete_class(class_id)
    assert store.query(f"classes/{class_id}/members").get() == []
    assert store.collection_group("classIndex").get() == []


def test_sweep_orphaned_index_rows(store, classes, class_id):
    classes.add_or_update_member(class_id, "s1", "student")
    store.set(index_path("ghost", class_id), {"classId": class_id, "role": "student"})
    store.set(index_path("s1", "gone"), {"classId": "gone", "role": "student"})
    assert classes.sweep_orphaned_index_rows() == 2
    assert store.get(index_path("s1", class_id)).exists
    assert store.get(index_path("prof", class_id)).exists
    assert classes.sweep_orphaned_index_rows() == 0


def test_sweep_keeps_row_of_member_readded_during_scan(store, classes, class_id, monkeypatch):
    classes.add_or_update_member(class_id, "s1", "student")
    original_get_all = store.get_all

    def churn_during_read(paths):
        classes.remove_member(class_id, "s1")
        snapshots = original_get_all(paths)
        classes.add_or_update_member(class_id, "s1", "student")
        return snapshots

    monkeypatch.setattr(store, "get_all", churn_during_read)
    assert classes.sweep_orphaned_index_rows() == 0
    assert store.get(member_path(class_id, "s1")).get("status") == "active"
    assert store.get(index_path("s1", class_id)).exists
    assert_consistent(store, class_id)

import threading
import time

import pytest

from core import Activity, BackendError, NotFoundError, Status, ValidationError
from core.metadata_codec import META_MARKER


def _wait_until(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def test_create_task_encodes_metadata_and_expands_dates(repo, store):
    task = repo.create_task(
        {
            "title": "  Morning walk  ",
            "description": "Loop around the park",
            "work_type": "walk",
            "activities": [{"title": "Stretch", "status": "done"}, "Walk"],
            "due_date": "2025-03-01",
        }
    )

    assert task.title == "Morning walk"
    assert task.description == "Loop around the park"
    assert task.work_type == "walk"
    assert [a.title for a in task.activities] == ["Stretch", "Walk"]
    assert task.due_date == "2025-03-01T09:00:00.000Z"
    assert task.status is Status.IN_PROGRESS
    assert META_MARKER in store.tasks[task.id].html


def test_create_task_validation_happens_before_writes(repo, store):
    with pytest.raises(ValidationError):
        repo.create_task({"title": "   "})
    with pytest.raises(ValidationError):
        repo.create_task({"title": "x", "colour": "red"})
    with pytest.raises(ValidationError):
        repo.create_task({"title": "x", "milestones": ["m1"]})
    with pytest.raises(ValidationError):
        repo.create_task({"title": "x", "status": "bogus"})
    with pytest.raises(ValidationError):
        repo.create_task({"title": 123})
    assert store.count("create_task") == 0
    assert store.tasks == {}


def test_create_done_task_toggles_once(repo, store):
    task = repo.create_task({"title": "Already finished", "status": "Done"})
    assert task.status is Status.DONE
    assert store.count("toggle_done") == 1


def test_title_only_update_keeps_metadata(repo):
    created = repo.create_task(
        {
            "title": "Read",
            "activities": [{"title": "Chapter 1", "status": "in-progress"}],
            "resources": {"book": "Dune"},
            "target_outcome": "Finish part one",
        }
    )

    updated = repo.update_task(created.id, {"title": "Read more"})

    assert updated.title == "Read more"
    assert updated.activities == [Activity("Chapter 1", "in-progress")]
    assert updated.resources == {"book": "Dune"}
    assert updated.target_outcome == "Finish part one"
    assert repo.get_task(created.id).activities == updated.activities


def test_update_that_changes_nothing_skips_the_store(repo, store):
    created = repo.create_task({"title": "Same", "work_type": "practice", "due_date": "2025-01-02"})

    repo.update_task(created.id, {"title": "Same", "work_type": "practice", "due_date": "2025-01-02"})

    assert store.count("update_task") == 0


def test_status_is_toggled_only_on_mismatch(repo, store):
    created = repo.create_task({"title": "Toggle me"})

    assert repo.update_task(created.id, {"status": "Done"}).status is Status.DONE
    repo.update_task(created.id, {"status": "done"})
    assert store.count("toggle_done") == 1

    assert repo.update_task(created.id, {"status": "In Progress"}).status is Status.IN_PROGRESS
    assert store.count("toggle_done") == 2


def test_invalid_updates_are_rejected(repo, store):
    created = repo.create_task({"title": "Strict"})
    with pytest.raises(ValidationError):
        repo.update_task(created.id, {"status": "sideways"})
    with pytest.raises(ValidationError):
        repo.update_task(created.id, {"title": ""})
    with pytest.raises(ValidationError):
        repo.update_task(created.id, {"title": 123})
    with pytest.raises(ValidationError):
        repo.update_task(created.id, {"resources": ["not", "a", "mapping"]})
    with pytest.raises(NotFoundError):
        repo.update_task("todo-missing", {"title": "x"})
    assert store.count("update_task") == 0


def test_update_replaces_description_but_keeps_metadata(repo):
    created = repo.create_task({"title": "Notes", "work_type": "books", "description": "old"})
    updated = repo.update_task(created.id, {"description": "new text"})
    assert updated.description == "new text"
    assert updated.work_type == "books"


def test_soft_delete_and_restore_roundtrip(repo):
    keep = repo.create_task({"title": "Keep"})
    gone = repo.create_task({"title": "Gone", "work_type": "walk"})

    result = repo.delete_task(gone.id)

    assert result["id"] == gone.id
    assert result["deleted_at"].endswith("Z")
    assert [t.id for t in repo.get_tasks()] == [keep.id]
    assert [t.id for t in repo.get_deleted_tasks()] == [gone.id]
    with pytest.raises(NotFoundError):
        repo.get_task(gone.id)
    assert repo.get_task(gone.id, include_deleted=True).is_deleted

    restored = repo.restore_task(gone.id)

    assert restored.deleted_at is None
    assert restored.work_type == "walk"
    assert {t.id for t in repo.get_tasks()} == {keep.id, gone.id}


def test_permanent_delete(repo, store):
    task = repo.create_task({"title": "Purge"})
    assert repo.delete_task(task.id, permanent=True) == {"id": task.id}
    assert task.id not in store.tasks
    with pytest.raises(NotFoundError):
        repo.delete_task(task.id, permanent=True)


def test_empty_trash_respects_age(repo, store):
    old = repo.create_task({"title": "Old"})
    fresh = repo.create_task({"title": "Fresh"})
    live = repo.create_task({"title": "Live"})
    repo.update_task(old.id, {"deleted_at": "2020-01-01T00:00:00.000Z"})
    repo.delete_task(fresh.id)

    assert repo.empty_trash(older_than_days=30) == {"deleted": 1, "failed": 0}
    assert old.id not in store.tasks
    assert fresh.id in store.tasks

    assert repo.empty_trash() == {"deleted": 1, "failed": 0}
    assert list(store.tasks) == [live.id]


def test_empty_trash_counts_failures(repo, store):
    task = repo.create_task({"title": "Stuck"})
    repo.delete_task(task.id)
    store.fail_on["delete_task"] = BackendError("store down")

    assert repo.empty_trash() == {"deleted": 0, "failed": 1}


def test_filters_and_sort_order(repo):
    a = repo.create_task({"title": "Write blog post", "sort_order": 2, "tags": ["content"]})
    b = repo.create_task({"title": "Read paper", "sort_order": 1, "description": "about blogs"})
    c = repo.create_task({"title": "Ship", "status": "Done", "tags": ["b2b-sales"]})

    assert [t.id for t in repo.get_tasks()] == [c.id, b.id, a.id]
    assert {t.id for t in repo.get_tasks({"search": "BLOG"})} == {a.id, b.id}
    assert [t.id for t in repo.get_tasks({"status": "Done"})] == [c.id]
    assert [t.id for t in repo.get_tasks({"dimension": "b2b"})] == [c.id]

    repo.delete_task(a.id)
    assert {t.id for t in repo.get_tasks({"includeDeleted": True})} == {a.id, b.id, c.id}
    assert [t.id for t in repo.get_tasks({"onlyDeleted": True})] == [a.id]


def test_unknown_status_filter_is_a_validation_error(repo, store):
    repo.create_task({"title": "Any"})
    with pytest.raises(ValidationError):
        repo.get_tasks({"status": "sideways"})
    with pytest.raises(ValidationError):
        repo.get_tasks("not a mapping")


def test_tags_are_created_with_default_color_and_reused(repo, store):
    first = repo.create_task({"title": "One", "tags": ["alpha", "beta", "alpha"]})
    second = repo.update_task(repo.create_task({"title": "Two"}).id, {"tags": ["beta"]})

    assert first.tags == ["alpha", "beta"]
    assert second.tags == ["beta"]
    assert [(t.title, t.color) for t in store.tags] == [("alpha", "#888888"), ("beta", "#888888")]


def test_tag_failure_does_not_abort_update(repo, store):
    task = repo.create_task({"title": "Tagged"})
    store.fail_on["list_tags"] = BackendError("tags unavailable")

    updated = repo.update_task(task.id, {"title": "Still saved", "tags": ["x"]})

    assert updated.title == "Still saved"
    assert updated.tags == []


def test_custom_field_failure_is_not_fatal_for_update(repo, store, caplog):
    task = repo.create_task({"title": "Milestoned"})
    store.fail_on["set_custom_field_value"] = BackendError("field write rejected")

    updated = repo.update_task(task.id, {"title": "Renamed", "milestones": ["m1"]})

    assert updated.title == "Renamed"
    assert updated.milestones == []
    assert "Failed to update custom field" in caplog.text


def test_comments_are_best_effort(repo, store):
    task = repo.create_task({"title": "Discuss"})
    repo.add_comment(task.id, "first!")

    result = repo.get_task_comments(task.id)
    assert result.ok
    assert [c["text"] for c in result.value] == ["first!"]

    store.fail_on["list_comments"] = BackendError("comments offline")
    failed = repo.get_task_comments(task.id)
    assert failed.ok is False
    assert failed.value == []
    assert isinstance(failed.error, BackendError)

    with pytest.raises(ValidationError):
        repo.add_comment(task.id, "   ")


def test_concurrent_modifications_keep_both_activities(repo, store):
    task = repo.create_task({"title": "Practice"})
    first_read = threading.Event()
    release = threading.Event()
    reads = []

    def hook(task_id):
        reads.append(task_id)
        if len(reads) == 1:
            first_read.set()
            release.wait(2)

    def append(name):
        repo.modify_task(task.id, lambda current: {"activities": current.activities + [Activity(name)]})

    store.read_hook = hook
    first = threading.Thread(target=append, args=("scales",))
    first.start()
    assert first_read.wait(2)

    second = threading.Thread(target=append, args=("arpeggios",))
    second.start()
    assert _wait_until(lambda: repo.serializer.pending(task.id) == 2)

    release.set()
    first.join(2)
    second.join(2)
    store.read_hook = None

    assert [a.title for a in repo.get_task(task.id).activities] == ["scales", "arpeggios"]
    assert repo.serializer.active_keys() == 0


def test_modify_task_refuses_relationship_changes(repo):
    task = repo.create_task({"title": "Guarded"})
    with pytest.raises(ValidationError):
        repo.modify_task(task.id, lambda current: {"relationships": []})

"""Generation Store: commit, history, rollback diff, gc, lock and failed attempts."""

import json

import pytest

from hostplane.core.errors import GenerationNotFound, LockError
from hostplane.core.plan.actions import ActionKind
from hostplane.core.plan.differ import compute_actions
from hostplane.core.plan.facts import managed_keys, snapshot
from hostplane.core.runtime.state import ObservedState
from hostplane.engine.executor import RunRecord
from hostplane.engine.generations import GenerationStore


def test_commit_links_parent_and_activates(store, desired, next_desired):
    first = store.commit(desired, [])
    second = store.commit(next_desired, [], source="next.yaml")

    assert (first.id, first.parent_id) == (1, None)
    assert (second.id, second.parent_id) == (2, 1)
    assert store.active_id() == 2
    assert store.active().source == "next.yaml"
    assert (store.root / "generations" / "gen-2.json").exists()


def test_generation_embeds_full_desired_state(store, desired):
    actions = compute_actions(desired, ObservedState())
    generation = store.commit(desired, actions)

    restored = store.get(generation.id)
    assert restored.desired_state() == desired
    assert restored.desired_hash == desired.content_hash()
    assert restored.actions == actions
    assert restored.success is True


def test_committed_files_are_never_rewritten(store, desired):
    store.commit(desired, [])
    path = store.root / "generations" / "gen-1.json"
    before = path.read_text()
    store.commit(desired, [])
    assert path.read_text() == before
    assert json.loads(before)["id"] == 1


def test_get_unknown_generation(store):
    with pytest.raises(GenerationNotFound) as exc:
        store.get(42)
    assert exc.value.generation_id == 42
    assert store.active() is None


def test_history_is_lazy_and_restartable(store, desired):
    history = store.list()
    assert list(history) == []

    for _ in range(3):
        store.commit(desired, [])

    assert [g.id for g in history] == [3, 2, 1]
    assert [g.id for g in history] == [3, 2, 1]
    assert len(history) == 3

    iterator = iter(history)
    assert next(iterator).id == 3


def test_rollback_diff_targets_stored_state(store, desired, next_desired):
    store.commit(desired, [])
    store.commit(next_desired, [])
    observed = snapshot(next_desired).with_managed(
        {k: s.value for k, s in managed_keys(next_desired).items()}
    )

    actions = store.rollback(1, observed)

    assert {(a.kind, a.target) for a in actions} == {
        (ActionKind.INSTALL, "git"),
        (ActionKind.REMOVE, "htop"),
        (ActionKind.SET_ENV, "CUDA_VISIBLE_DEVICES"),
    }


def test_gc_keeps_recent_and_active(store, desired):
    for _ in range(5):
        store.commit(desired, [])
    store.active_path.write_text("1\n")

    removed = store.collect_garbage(keep=1)

    assert removed == [2, 3, 4]
    assert store.ids() == [5, 1]
    assert store.active().id == 1


def test_gc_respects_age_threshold(store, desired):
    for _ in range(4):
        store.commit(desired, [])
    assert store.collect_garbage(keep=1, older_than_days=1) == []
    assert store.collect_garbage(keep=2) == [1, 2]


def test_lock_is_exclusive(store):
    other = GenerationStore(store.root)
    with store.lock():
        with pytest.raises(LockError):
            with other.lock():
                pass
    with other.lock():
        pass


def test_failed_attempts_are_logged_not_committed(store, desired):
    record = RunRecord(error="boom", failed_index=0)
    path = store.record_failure(record, desired.content_hash())

    assert path.name == f"attempt-{record.run_id}.json"
    assert store.ids() == []
    attempts = store.failures()
    assert len(attempts) == 1
    assert attempts[0].record.error == "boom"
    assert attempts[0].desired_hash == desired.content_hash()


def test_gc_prunes_old_failed_attempts(store, desired):
    old = [RunRecord(error="boom", started_at=f"2020-01-0{day}T00:00:00+00:00") for day in (1, 2)]
    recent = [RunRecord(error="boom"), RunRecord(error="boom")]
    for record in old + recent:
        store.record_failure(record, desired.content_hash())

    assert store.prune_failures(keep=1, older_than_days=30) == 2
    remaining = {a.record.run_id for a in store.failures()}
    assert remaining == {r.run_id for r in recent}

    assert store.prune_failures(keep=1) == 1
    assert len(store.failures()) == 1

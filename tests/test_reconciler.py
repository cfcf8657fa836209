"""End-to-end reconciliation against the sandbox host."""

import json
import time

import pytest

from hostplane.core.errors import ActionError, RunCancelled, ValidationError
from hostplane.core.plan.actions import ActionKind
from hostplane.core.plan.facts import flatten
from hostplane.core.runtime.state import HostIdentity
from hostplane.engine.executor import CancelToken
from hostplane.engine.reconciler import Reconciler, Watchdog

from conftest import BASE_DESCRIPTOR, NEXT_DESCRIPTOR


def sandbox_setup(sandbox, **data):
    sandbox.path.write_text(json.dumps(data))


def test_apply_converges_and_is_idempotent(reconciler, sandbox, store, write_descriptor, desired):
    path = write_descriptor()

    first = reconciler.apply(path)
    assert first.changed
    assert first.generation.id == 1
    assert first.generation.source == str(path)
    for key, value in flatten(desired).items():
        assert sandbox.facts[key] == value

    second = reconciler.apply(path)
    assert not second.changed
    assert second.actions == []
    assert second.generation.id == 1
    assert store.ids() == [1]


def test_diff_does_not_touch_host(reconciler, sandbox, store, write_descriptor):
    result = reconciler.plan(write_descriptor())
    assert not result.empty
    assert sandbox.facts == {}
    assert store.ids() == []


def test_descriptor_for_other_host_is_rejected(sandbox, store, write_descriptor):
    reconciler = Reconciler(sandbox, store, identity=HostIdentity("laptop", "x86_64"))
    with pytest.raises(ValidationError) as exc:
        reconciler.apply(write_descriptor())
    assert "workstation" in exc.value.errors[0]
    assert sandbox.facts == {}
    assert store.ids() == []


def test_failed_action_records_attempt_without_generation(reconciler, sandbox, store, write_descriptor):
    sandbox_setup(sandbox, facts={}, fail_on=["package:git"])

    with pytest.raises(ActionError) as exc:
        reconciler.apply(write_descriptor())

    assert exc.value.target == "git"
    assert store.active() is None
    assert store.ids() == []
    assert sandbox.facts["module:nvidia"] is True
    assert "package:git" not in sandbox.facts
    attempts = store.failures()
    assert len(attempts) == 1
    assert attempts[0].record.applied == exc.value.record.applied
    assert attempts[0].record.pending[0].target == "git"


def test_failure_keeps_last_good_generation(reconciler, sandbox, store, write_descriptor):
    reconciler.apply(write_descriptor())
    data = json.loads(sandbox.path.read_text())
    data["fail_on"] = ["htop"]
    sandbox.path.write_text(json.dumps(data))

    with pytest.raises(ActionError):
        reconciler.apply(write_descriptor(NEXT_DESCRIPTOR, name="next.yaml"))

    assert store.active_id() == 1
    assert store.ids() == [1]


def test_rollback_restores_previous_generation(reconciler, sandbox, store, write_descriptor, desired):
    base = write_descriptor()
    reconciler.apply(base)
    second = reconciler.apply(write_descriptor(NEXT_DESCRIPTOR, name="next.yaml"))
    assert {(a.kind, a.target) for a in second.actions} >= {(ActionKind.REMOVE, "git"), (ActionKind.INSTALL, "htop")}
    assert "package:git" not in sandbox.facts

    result = reconciler.rollback(1)

    assert result.changed
    assert result.generation.id == 3
    assert result.generation.reason == "rollback"
    assert result.generation.rolled_back_to == 1
    assert result.generation.desired_hash == desired.content_hash()
    assert "package:htop" not in sandbox.facts
    for key, value in flatten(desired).items():
        assert sandbox.facts[key] == value
    assert reconciler.plan(base).empty
    assert not reconciler.apply(base).changed


def test_rollback_to_active_state_is_noop(reconciler, store, write_descriptor):
    reconciler.apply(write_descriptor())
    result = reconciler.rollback(1)
    assert not result.changed
    assert store.ids() == [1]


def test_metadata_only_change_commits_empty_generation(reconciler, store, write_descriptor):
    reconciler.apply(write_descriptor())
    tagged = BASE_DESCRIPTOR.replace("  hostname: workstation\n", "  hostname: workstation\n  architecture: x86_64\n", 1)

    result = reconciler.apply(write_descriptor(tagged, name="tagged.yaml"))

    assert result.changed
    assert result.actions == []
    assert result.generation.id == 2


def test_broken_probe_degrades_to_unknown(reconciler, sandbox, write_descriptor, desired):
    facts = {k: v for k, v in flatten(desired).items()}
    sandbox_setup(sandbox, facts=facts, broken_probes=["service"])

    result = reconciler.plan(write_descriptor())

    assert result.observed.unknown == frozenset({"service"})
    assert result.observed.warnings
    assert [(a.kind, a.target) for a in result.actions] == [
        (ActionKind.ENABLE_SERVICE, "ssh"),
        (ActionKind.ENABLE_SERVICE, "ollama"),
    ]


def test_cancel_before_execution_leaves_no_trace(reconciler, sandbox, store, write_descriptor):
    token = CancelToken()
    token.cancel()

    with pytest.raises(RunCancelled) as exc:
        reconciler.apply(write_descriptor(), token)

    assert exc.value.record is None
    assert sandbox.facts == {}
    assert store.failures() == []


def test_cancel_during_final_action_commits_nothing(reconciler, sandbox, store, write_descriptor, monkeypatch):
    token = CancelToken()
    apply = sandbox.apply

    def apply_then_cancel(action):
        apply(action)
        token.cancel()

    monkeypatch.setattr(sandbox, "apply", apply_then_cancel)

    with pytest.raises(RunCancelled) as exc:
        reconciler.apply(write_descriptor("packages: [git]\n"), token)

    assert exc.value.record.cancelled
    assert sandbox.facts["package:git"] is True
    assert store.active() is None
    assert store.ids() == []
    assert len(store.failures()) == 1


def test_watchdog_warns_without_interrupting(output):
    console, buffer = output
    with Watchdog(0.01, console) as watchdog:
        time.sleep(0.1)
    assert watchdog.warnings >= 1
    assert "en curso" in buffer.getvalue()


def test_lock_released_after_run(reconciler, store, write_descriptor):
    reconciler.apply(write_descriptor())
    with store.lock():
        pass

"""Action Executor: sequential application, fail-halt and cancellation."""

import pytest

from hostplane.core.errors import ActionError, RunCancelled
from hostplane.core.plan.actions import Action, ActionKind, Subsystem
from hostplane.engine.executor import ActionExecutor, CancelToken, OutcomeStatus


class RecordingBackend:
    name = "recording"
    categories = ()

    def __init__(self, fail_on=(), on_apply=None):
        self.applied = []
        self.fail_on = set(fail_on)
        self.on_apply = on_apply

    def applicable(self, category, identity):
        return True

    def probe(self, category):
        return {}

    def apply(self, action):
        if action.target in self.fail_on:
            raise RuntimeError("E: Unable to locate package")
        self.applied.append(action.target)
        if self.on_apply:
            self.on_apply(action)


def installs(*names):
    return [Action(kind=ActionKind.INSTALL, subsystem=Subsystem.PACKAGES, target=n, after=True) for n in names]


def test_all_actions_applied_in_order(output):
    console, buffer = output
    backend = RecordingBackend()
    record = ActionExecutor(backend, console=console).execute(installs("git", "gcc", "jq"))

    assert backend.applied == ["git", "gcc", "jq"]
    assert [o.status for o in record.outcomes] == [OutcomeStatus.APPLIED] * 3
    assert record.finished_at is not None
    assert record.failed_index is None
    assert "[3/3] install jq" in buffer.getvalue()


def test_first_failure_halts_run():
    backend = RecordingBackend(fail_on={"gcc"})
    actions = installs("git", "gcc", "jq")

    with pytest.raises(ActionError) as exc:
        ActionExecutor(backend).execute(actions)

    error = exc.value
    assert error.target == "gcc"
    assert isinstance(error.cause, RuntimeError)
    assert backend.applied == ["git"]
    assert error.record.applied == actions[:1]
    assert error.record.pending == actions[1:]
    assert error.record.failed_index == 1
    assert "Unable to locate" in error.record.error


def test_cancel_before_start_applies_nothing():
    token = CancelToken()
    token.cancel()
    backend = RecordingBackend()

    with pytest.raises(RunCancelled) as exc:
        ActionExecutor(backend).execute(installs("git", "gcc"), token)

    assert backend.applied == []
    assert exc.value.record.cancelled
    assert len(exc.value.record.pending) == 2


def test_cancel_during_action_waits_for_it():
    token = CancelToken()
    backend = RecordingBackend(on_apply=lambda action: token.cancel())

    with pytest.raises(RunCancelled) as exc:
        ActionExecutor(backend).execute(installs("git", "gcc", "jq"), token)

    record = exc.value.record
    assert backend.applied == ["git"]
    assert [a.target for a in record.applied] == ["git"]
    assert [a.target for a in record.pending] == ["gcc", "jq"]
    assert record.failed_index == 1


def test_cancel_during_last_action_still_aborts():
    token = CancelToken()
    backend = RecordingBackend(on_apply=lambda action: token.cancel())

    with pytest.raises(RunCancelled) as exc:
        ActionExecutor(backend).execute(installs("git"), token)

    record = exc.value.record
    assert backend.applied == ["git"]
    assert record.cancelled
    assert record.failed_index == 1
    assert record.pending == []

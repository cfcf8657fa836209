"""Fact projection and the Diff Engine."""

import pytest

from hostplane.core.descriptor.loader import load_descriptor, parse_descriptor
from hostplane.core.plan.actions import SUBSYSTEM_ORDER, ActionKind, Subsystem
from hostplane.core.plan.differ import compute_actions
from hostplane.core.plan.facts import (
    ALIASES_FILE,
    BLACKLIST_FILE,
    MODULES_LOAD_FILE,
    flatten,
    managed_keys,
    package_channels,
    project,
    snapshot,
)
from hostplane.core.plan.planner import plan, plan_lines
from hostplane.core.runtime.state import UNKNOWN, ObservedState

from conftest import REPO_ROOT


def kinds_and_targets(actions):
    return [(a.kind, a.target) for a in actions]


class TestProjection:
    def test_facts_are_grouped_by_subsystem(self, desired):
        projection = project(desired)
        assert list(projection) == list(SUBSYSTEM_ORDER)
        assert projection[Subsystem.BOOT][f"file:{BLACKLIST_FILE}"].value == "blacklist nouveau\n"
        assert "module:nvidia" in projection[Subsystem.BOOT]
        assert projection[Subsystem.NETWORK] == {}

    def test_flatten_values(self, desired):
        facts = flatten(desired)
        assert facts["service:ssh"] is True
        assert facts["config:ollama.host"] == "0.0.0.0"
        assert facts["package:ollama"] is True
        assert facts["member:yumlabs:wheel"] is True
        assert facts["user:yumlabs"] == {"description": "yumlabs", "normal_user": True, "shell": "/bin/bash"}
        assert facts["env:CUDA_VISIBLE_DEVICES"] == "0"
        assert facts[f"file:{ALIASES_FILE}"] == "alias ll='ls -l'\n"

    def test_channel_prefix_is_not_part_of_the_package_fact(self, desired):
        assert "package:unstable.ollama" not in flatten(desired)
        assert package_channels(desired) == {"ollama": "unstable"}

    def test_list_variables_join_with_colon(self):
        state = parse_descriptor("environment:\n  variables:\n    PATH: [/a, /b]\n")
        assert flatten(state)["env:PATH"] == "/a:/b"

    def test_firewall_facts_only_when_declared(self):
        state = parse_descriptor("network:\n  firewall:\n    allowed_tcp_ports: [8000, 3000, 8000]\n")
        facts = flatten(state)
        assert facts["config:network.firewall.enable"] is True
        assert facts["config:network.firewall.allowed_tcp_ports"] == [3000, 8000]

    def test_swap_locale_and_keyboard_facts(self):
        state = parse_descriptor(
            "boot:\n  kernel_modules: [nvidia]\n  swap:\n    - device: /var/swap\n      size_mib: 8192\n"
            "environment:\n  locale: en_US.UTF-8\n  extra_locale:\n    LC_TIME: en_GB.UTF-8\n"
            "  keyboard:\n    layout: us\n"
        )
        projection = project(state)

        assert projection[Subsystem.BOOT]["config:boot.swap./var/swap"].value == {"size_mib": 8192}
        assert projection[Subsystem.BOOT][f"file:{MODULES_LOAD_FILE}"].value == "nvidia\n"
        environment = projection[Subsystem.ENVIRONMENT]
        assert environment["config:environment.locale.LC_TIME"].value == "en_GB.UTF-8"
        assert environment["config:environment.keyboard"].value == {"layout": "us", "variant": ""}

    def test_managed_keys_record_owner(self, desired):
        managed = managed_keys(desired)
        assert managed["service:ollama"] == Subsystem.SERVICES
        assert managed["module:nvidia"] == Subsystem.BOOT
        assert managed["package:ollama"] == Subsystem.SERVICES
        assert "config:ollama.package" not in managed


class TestDiffEngine:
    def test_enable_before_configure(self):
        desired = parse_descriptor("services:\n  - name: ollama\n    settings:\n      host: 0.0.0.0\n")
        observed = ObservedState(facts={"service:ollama": False})

        actions = compute_actions(desired, observed)

        assert kinds_and_targets(actions) == [
            (ActionKind.ENABLE_SERVICE, "ollama"),
            (ActionKind.SET_CONFIG, "ollama.host"),
        ]
        assert actions[0].before is False
        assert actions[1].after == "0.0.0.0"

    def test_matching_host_yields_no_actions(self, desired):
        assert compute_actions(desired, snapshot(desired)) == []

    def test_same_inputs_same_sequence(self, desired):
        facts = {"package:git": True, "service:ssh": False, "env:CUDA_VISIBLE_DEVICES": "1"}
        first = compute_actions(desired, ObservedState(facts=facts))
        reordered = ObservedState(facts=dict(reversed(list(facts.items()))))
        second = compute_actions(desired, reordered)
        assert [a.model_dump_json() for a in first] == [a.model_dump_json() for a in second]

    def test_subsystem_precedence(self, desired):
        actions = compute_actions(desired, ObservedState())
        ranks = [SUBSYSTEM_ORDER.index(a.subsystem) for a in actions]
        assert ranks == sorted(ranks)
        assert actions[0].subsystem == Subsystem.BOOT
        assert actions[-1].subsystem == Subsystem.ENVIRONMENT

    def test_service_package_installed_before_service_is_enabled(self):
        desired = load_descriptor(REPO_ROOT / "descriptors" / "workstation.yaml")
        actions = kinds_and_targets(compute_actions(desired, ObservedState()))

        assert actions.count((ActionKind.INSTALL, "ollama")) == 1
        assert actions.index((ActionKind.INSTALL, "ollama")) < actions.index((ActionKind.ENABLE_SERVICE, "ollama"))

    def test_user_created_before_its_groups(self, desired):
        actions = [a for a in compute_actions(desired, ObservedState()) if a.subsystem == Subsystem.USERS]
        assert kinds_and_targets(actions) == [
            (ActionKind.CREATE_USER, "yumlabs"),
            (ActionKind.ADD_GROUP, "yumlabs:docker"),
            (ActionKind.ADD_GROUP, "yumlabs:wheel"),
        ]

    def test_existing_user_is_modified(self, desired):
        observed = snapshot(desired)
        facts = dict(observed.facts)
        facts["user:yumlabs"] = {"description": "yumlabs", "normal_user": True, "shell": "/bin/zsh"}
        actions = compute_actions(desired, ObservedState(facts=facts))
        assert kinds_and_targets(actions) == [(ActionKind.MODIFY_USER, "yumlabs")]
        assert actions[0].before["shell"] == "/bin/zsh"

    def test_install_carries_channel(self, desired):
        installs = [a for a in compute_actions(desired, ObservedState()) if a.kind == ActionKind.INSTALL]
        assert [(a.target, a.channel) for a in installs] == [("ollama", "unstable"), ("git", None)]

    @pytest.mark.parametrize("category", ["package", "service", "env", "user"])
    def test_unknown_category_always_yields_actions(self, desired, category):
        observed = ObservedState(facts=snapshot(desired).facts, unknown=frozenset({category}))
        actions = compute_actions(desired, observed)
        touched = {a.key for a in actions}
        expected = {k for k in flatten(desired) if k.startswith(category + ":")}
        assert expected and expected <= touched

    def test_unknown_value_yields_action(self, desired):
        facts = dict(snapshot(desired).facts)
        facts["service:ssh"] = UNKNOWN
        actions = compute_actions(desired, ObservedState(facts=facts))
        assert kinds_and_targets(actions) == [(ActionKind.ENABLE_SERVICE, "ssh")]
        assert actions[0].before is None

    def test_only_managed_facts_are_removed(self, desired):
        facts = dict(snapshot(desired).facts)
        facts["package:htop"] = True
        facts["package:vim"] = True
        managed = {k: s.value for k, s in managed_keys(desired).items()}
        managed["package:htop"] = "packages"
        actions = compute_actions(desired, ObservedState(facts=facts, managed=managed))
        assert kinds_and_targets(actions) == [(ActionKind.REMOVE, "htop")]
        assert actions[0].after is None

    def test_removed_fact_already_gone_is_skipped(self, desired):
        observed = ObservedState(facts=snapshot(desired).facts, managed={"package:htop": "packages"})
        assert compute_actions(desired, observed) == []

    def test_memberships_removed_before_user(self):
        desired = parse_descriptor("version: 1\n")
        observed = ObservedState(
            facts={"user:old": {"shell": "/bin/sh"}, "member:old:wheel": True},
            managed={"user:old": "users", "member:old:wheel": "users"},
        )
        assert kinds_and_targets(compute_actions(desired, observed)) == [
            (ActionKind.REMOVE_GROUP, "old:wheel"),
            (ActionKind.REMOVE_USER, "old"),
        ]

    def test_removals_follow_declared_items_of_their_subsystem(self, desired):
        observed = ObservedState(
            facts={"package:htop": True},
            managed={"package:htop": "packages"},
        )
        actions = compute_actions(desired, observed)
        packages = [a for a in actions if a.subsystem == Subsystem.PACKAGES]
        assert packages[-1].kind == ActionKind.REMOVE
        assert actions[-1].subsystem == Subsystem.ENVIRONMENT

    def test_desired_state_is_not_mutated(self, desired):
        before = desired.content_hash()
        compute_actions(desired, ObservedState())
        assert desired.content_hash() == before


def test_plan_summary_and_lines(desired):
    result = plan(desired, ObservedState(facts=snapshot(desired).facts | {"service:ssh": False}))
    assert not result.empty
    assert result.summary == "1 acciones (services=1)"
    assert plan_lines(result.actions) == ["1. [services] enable-service ssh"]

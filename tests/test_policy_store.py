"""
Tests for the Policy Store.
"""

import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
import yaml

import gatekeeper.policy_store as policy_store_module
from gatekeeper.config_loader import load_policy
from gatekeeper.exceptions import ConfigError
from gatekeeper.models import Action, Policy
from gatekeeper.policy_store import PolicyStore
from tests.policy_helpers import DEFAULT_CONFIG, match_node, scoped


def _policy_data(version, path="api"):
    return {
        "policy": {
            "version": version,
            "rules": [
                {
                    "name": f"block-{version}",
                    "priority": 0,
                    "action": "BLOCK",
                    "predicate": scoped(match_node("uri_path", path, "CONTAINS")),
                }
            ],
        }
    }


class RecordingLogger:
    def __init__(self):
        self.events = []

    def info(self, event, **kwargs):
        self.events.append((event, kwargs))

    error = info


def _write(data) -> str:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(data, f)
        return f.name


class TestPolicyStore:
    """Test PolicyStore functionality."""

    def test_initialization_empty(self):
        """Test that a store without a source holds an empty allow-all policy."""
        store = PolicyStore()
        assert store.rules == ()
        assert store.default_action() == Action.ALLOW
        assert store.generation == 0

    def test_initialization_with_source(self):
        store = PolicyStore(DEFAULT_CONFIG)
        assert len(store.rules) == 2
        assert store.version == "2023-11-bot-control"

    def test_initialization_with_policy(self):
        policy = load_policy(_policy_data("v1"))
        store = PolicyStore(policy=policy)
        assert store.policy is policy

    def test_source_and_policy_are_exclusive(self):
        with pytest.raises(ValueError, match="not both"):
            PolicyStore(DEFAULT_CONFIG, policy=Policy())

    def test_invalid_source_is_fatal(self):
        with pytest.raises(ConfigError):
            PolicyStore({"rules": "nope"})

    def test_rules_are_read_only(self):
        store = PolicyStore(DEFAULT_CONFIG)
        with pytest.raises(Exception):  # Pydantic frozen instance error
            store.policy.rules = ()
        assert isinstance(store.rules, tuple)

    def test_reload_swaps_policy(self):
        temp_path = _write(_policy_data("v1"))
        try:
            store = PolicyStore(temp_path)
            first = store.policy
            assert store.version == "v1"

            Path(temp_path).write_text(yaml.dump(_policy_data("v2", path="dev")))
            reloaded = store.reload()

            assert reloaded.version == "v2"
            assert store.policy is reloaded
            assert store.generation == 1
            # Snapshots already handed out are untouched
            assert first.version == "v1"
        finally:
            Path(temp_path).unlink()

    def test_reload_failure_keeps_previous_policy(self):
        temp_path = _write(_policy_data("v1"))
        try:
            store = PolicyStore(temp_path)
            Path(temp_path).write_text(yaml.dump({"policy": {"rules": [{"name": "broken"}]}}))

            with pytest.raises(ConfigError):
                store.reload()

            assert store.version == "v1"
            assert store.generation == 0
        finally:
            Path(temp_path).unlink()

    def test_reload_with_new_source(self):
        store = PolicyStore(_policy_data("v1"))
        store.reload(_policy_data("v2"))
        assert store.version == "v2"
        # The new source is remembered for later reloads
        store.reload()
        assert store.version == "v2"
        assert store.generation == 2

    def test_reload_without_source(self):
        store = PolicyStore()
        with pytest.raises(ValueError, match="No policy source"):
            store.reload()

    def test_replace_validates(self):
        store = PolicyStore()
        unscoped = load_policy(
            [{"name": "allow-all", "priority": 0, "action": "ALLOW", "predicate": match_node("uri_path", "", "CONTAINS")}]
        )
        store.replace(unscoped)
        assert store.policy is unscoped

        duplicate = Policy(rules=unscoped.rules + unscoped.rules)
        with pytest.raises(ConfigError, match="Duplicate"):
            store.replace(duplicate)
        assert store.policy is unscoped

    def test_replace_logs_generation_change(self, monkeypatch):
        store = PolicyStore(_policy_data("v1"))
        recorder = RecordingLogger()
        monkeypatch.setattr(policy_store_module, "logger", recorder)

        store.replace(load_policy(_policy_data("v2")))

        assert recorder.events == [
            ("policy_reloaded", {"previous_version": "v1", "version": "v2", "generation": 1})
        ]

    def test_reload_from_within_a_reload(self, monkeypatch):
        """A reload triggered while another one is loading completes instead of waiting."""
        store = PolicyStore(_policy_data("v1"))
        real_load_policy = policy_store_module.load_policy
        nested = []

        def load_and_reload(source):
            if not nested:
                nested.append(None)
                nested[0] = store.reload(_policy_data("v2"))
            return real_load_policy(source)

        monkeypatch.setattr(policy_store_module, "load_policy", load_and_reload)
        store.reload(_policy_data("v3"))

        assert nested[0].version == "v2"
        assert store.version == "v3"
        assert store.generation == 2

    def test_concurrent_readers_see_whole_generations(self):
        store = PolicyStore(_policy_data("v0"))
        versions = {f"v{i}" for i in range(20)}

        def reader():
            seen, torn = [], []
            for _ in range(500):
                policy = store.policy
                seen.append(policy.version)
                # A snapshot's rules always belong to its own version
                if [rule.name for rule in policy.rules] != [f"block-{policy.version}"]:
                    torn.append(policy.version)
            return seen, torn

        with ThreadPoolExecutor(max_workers=4) as pool:
            futures = [pool.submit(reader) for _ in range(4)]
            for i in range(1, 20):
                store.reload(_policy_data(f"v{i}"))
            results = [future.result() for future in futures]

        for seen, torn in results:
            assert torn == []
            assert set(seen) <= versions
        assert store.version == "v19"
        assert store.generation == 19

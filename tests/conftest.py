"""Shared fixtures for wafsync tests."""

from typing import Any

import pytest

from wafsync.config import Settings
from wafsync.models import RuleMode


def make_rule(
    rule_id: str,
    name: str,
    ips: list[str],
    active: bool = True,
    mode: RuleMode = RuleMode.DENY,
) -> dict[str, Any]:
    """Build a rule dict shaped like the firewall API returns it."""
    return {
        "id": rule_id,
        "name": name,
        "description": mode.description,
        "active": active,
        "conditionGroup": [
            {"conditions": [{"type": "ip_address", "op": mode.ip_operator, "value": ips}]}
        ],
        "action": {"mitigate": {"action": mode.mitigate_action}},
    }


class FakeFirewallClient:
    """In-memory stand-in for FirewallClient.

    Every call is recorded in ``calls`` as ``(action, key)``. Failures are
    injected through ``failures``, keyed the same way.
    """

    def __init__(self, rules: list[dict[str, Any]] | None = None):
        self.rules = [dict(rule) for rule in rules or []]
        self.calls: list[tuple[str, Any]] = []
        self.failures: dict[tuple[str, Any], Exception] = {}
        self.closed = False
        self._next_id = 1

    def _record(self, action: str, key: Any) -> None:
        self.calls.append((action, key))
        error = self.failures.get((action, key))
        if error is not None:
            raise error

    def get_firewall_config(self) -> dict[str, Any]:
        self._record("get", None)
        return {"active": {"rules": [dict(rule) for rule in self.rules]}}

    def insert_rule(self, value: dict[str, Any]) -> dict[str, Any]:
        self._record("insert", value["name"])
        rule = {"id": f"rule_new{self._next_id}", **value}
        self._next_id += 1
        self.rules.append(rule)
        return {}

    def update_rule(self, rule_id: str, value: dict[str, Any]) -> dict[str, Any]:
        self._record("update", rule_id)
        for index, rule in enumerate(self.rules):
            if rule["id"] == rule_id:
                self.rules[index] = {"id": rule_id, **value}
        return {}

    def set_rule_active(self, rule_id: str, active: bool) -> dict[str, Any]:
        self._record("set_active", rule_id)
        for rule in self.rules:
            if rule["id"] == rule_id:
                rule["active"] = active
        return {}

    def remove_rule(self, rule_id: str) -> dict[str, Any]:
        self._record("remove", rule_id)
        self.rules = [rule for rule in self.rules if rule["id"] != rule_id]
        return {}

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    """Settings with no pacing, no jitter and a known project."""
    return Settings(
        _env_file=None,
        vercel_token="test-token",
        project_id="prj_test",
        team_id="team_test",
        rule_mode="deny",
        rate_limit_delay_ms=0,
        retry_base_delay=0,
        retry_jitter=0,
        purge_delay=0,
    )


@pytest.fixture
def sleeps() -> list[float]:
    """Collects requested sleep durations instead of sleeping."""
    return []

"""Data model: address entries, rule modes and remote firewall rules."""

import ipaddress
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

MAX_IPV4 = 0xFFFFFFFF


@dataclass(frozen=True, order=True)
class AddressEntry:
    """An IPv4 address (prefix 32) or CIDR block.

    ``base`` is kept exactly as written in the input, so a block written with
    host bits set (``10.0.0.5/24``) passes through unchanged. Coverage is
    always computed from the masked network address.
    """

    base: int
    prefix: int = 32

    def __post_init__(self):
        if not 0 <= self.base <= MAX_IPV4:
            raise ValueError(f"IPv4 address out of range: {self.base}")
        if not 0 <= self.prefix <= 32:
            raise ValueError(f"IPv4 prefix out of range: {self.prefix}")

    @classmethod
    def from_string(cls, text: str) -> "AddressEntry":
        """Build an entry from ``a.b.c.d`` or ``a.b.c.d/p`` without validation
        of input formatting (see :mod:`wafsync.parser` for that)."""
        address, _, prefix = text.partition("/")
        return cls(int(ipaddress.IPv4Address(address)), int(prefix) if prefix else 32)

    @property
    def is_singleton(self) -> bool:
        return self.prefix == 32

    @property
    def num_addresses(self) -> int:
        return 1 << (32 - self.prefix)

    @property
    def first(self) -> int:
        mask = (MAX_IPV4 << (32 - self.prefix)) & MAX_IPV4
        return self.base & mask

    @property
    def last(self) -> int:
        return self.first + self.num_addresses - 1

    @property
    def network(self) -> ipaddress.IPv4Network:
        return ipaddress.IPv4Network((self.first, self.prefix))

    def contains(self, other: "AddressEntry") -> bool:
        return self.first <= other.first and other.last <= self.last

    def __str__(self) -> str:
        address = str(ipaddress.IPv4Address(self.base))
        if self.is_singleton:
            return address
        return f"{address}/{self.prefix}"


class RuleMode(str, Enum):
    """Which rule family is managed.

    ``deny`` blocks every address not in the list (allowlist); ``bypass``
    skips WAF checks for addresses in the list.
    """

    DENY = "deny"
    BYPASS = "bypass"

    @property
    def rule_name(self) -> str:
        if self is RuleMode.BYPASS:
            return "IP Bypass - Auto-managed"
        return "IP Allowlist - Auto-managed"

    @property
    def description(self) -> str:
        if self is RuleMode.BYPASS:
            return "Bypass WAF/security for whitelisted IPs. Managed by wafsync"
        return "Block all traffic except whitelisted IPs. Managed by wafsync"

    @property
    def ip_operator(self) -> str:
        # inc: address is in the list, ninc: address is not in the list
        return "inc" if self is RuleMode.BYPASS else "ninc"

    @property
    def mitigate_action(self) -> str:
        return "bypass" if self is RuleMode.BYPASS else "deny"

    @property
    def effect(self) -> str:
        if self is RuleMode.BYPASS:
            return (
                "Listed IPs will BYPASS WAF/security checks. "
                "All other traffic flows normally through security rules."
            )
        return "All traffic from IPs NOT in this list will be BLOCKED."


class RemoteRule(BaseModel):
    """A firewall rule as reported by the API."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    name: str = ""
    description: str | None = None
    active: bool = True
    condition_group: list[dict[str, Any]] = Field(
        default_factory=list, alias="conditionGroup"
    )
    action: dict[str, Any] = Field(default_factory=dict)

    def _conditions(self) -> list[dict[str, Any]]:
        conditions = []
        for group in self.condition_group:
            conditions.extend(group.get("conditions") or [])
        return conditions

    @property
    def ip_addresses(self) -> list[str]:
        for condition in self._conditions():
            if condition.get("type") == "ip_address":
                value = condition.get("value") or []
                return list(value) if isinstance(value, list) else [value]
        return []

    @property
    def hostname(self) -> str | None:
        for condition in self._conditions():
            if condition.get("type") == "host":
                return condition.get("value")
        return None

    @property
    def mitigate_action(self) -> str | None:
        return (self.action.get("mitigate") or {}).get("action")

    def to_value(self) -> dict[str, Any]:
        """Rule value suitable for re-inserting this rule (no id)."""
        return self.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)


@dataclass(frozen=True)
class DesiredRule:
    """A rule the reconciler wants to exist remotely."""

    name: str
    addresses: tuple[AddressEntry, ...]

    def to_value(self, mode: RuleMode, hostname: str | None = None) -> dict[str, Any]:
        conditions: list[dict[str, Any]] = []
        if hostname:
            conditions.append({"type": "host", "op": "eq", "value": hostname})
        conditions.append(
            {
                "type": "ip_address",
                "op": mode.ip_operator,
                "value": [str(entry) for entry in self.addresses],
            }
        )
        return {
            "name": self.name,
            "description": mode.description,
            "active": True,
            "conditionGroup": [{"conditions": conditions}],
            "action": {"mitigate": {"action": mode.mitigate_action}},
        }

"""Reconciliation of the managed rule family against the remote firewall.

Remote rules are matched by name only: the mode's base rule name, or the base
name followed by a ``" (Part i/N)"`` suffix when the address list was split
across several rules.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from .errors import RemoteError
from .models import AddressEntry, DesiredRule, RemoteRule, RuleMode
from .planner import ChunkPlan
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def is_managed_name(name: str, base_name: str) -> bool:
    return name == base_name or name.startswith(f"{base_name} (Part")


def find_managed_rules(config: dict[str, Any] | None, base_name: str) -> list[RemoteRule]:
    """Return every rule in ``config`` that belongs to the managed family.

    The API nests rules under ``active.rules``; older responses and backups
    carry a top-level ``rules`` array. The first non-empty match wins.
    """
    if not config:
        return []

    candidates = [(config.get("active") or {}).get("rules"), config.get("rules")]
    for rules in candidates:
        if not rules:
            continue
        matches = [
            RemoteRule.model_validate(rule)
            for rule in rules
            if isinstance(rule, dict)
            and rule.get("id")
            and is_managed_name(rule.get("name") or "", base_name)
        ]
        if matches:
            logger.debug(f"Found {len(matches)} rule(s) named '{base_name}'")
            return matches
    return []


class OperationKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass(frozen=True)
class RuleOperation:
    """One planned remote mutation."""

    kind: OperationKind
    name: str
    rule_id: str | None = None
    addresses: tuple[AddressEntry, ...] = ()

    @property
    def required(self) -> bool:
        # removals are cleanup; inserts and updates carry the new addresses
        return self.kind is not OperationKind.REMOVE

    def describe(self) -> str:
        if self.kind is OperationKind.REMOVE:
            return f"remove '{self.name}' ({self.rule_id})"
        if self.kind is OperationKind.UPDATE:
            return f"update '{self.name}' ({self.rule_id}) with {len(self.addresses)} IPs"
        return f"insert '{self.name}' with {len(self.addresses)} IPs"


@dataclass(frozen=True)
class ReconcilePlan:
    operations: tuple[RuleOperation, ...]
    existing: tuple[RemoteRule, ...] = ()

    def _count(self, kind: OperationKind) -> int:
        return sum(1 for op in self.operations if op.kind is kind)

    @property
    def inserts(self) -> int:
        return self._count(OperationKind.INSERT)

    @property
    def updates(self) -> int:
        return self._count(OperationKind.UPDATE)

    @property
    def removals(self) -> int:
        return self._count(OperationKind.REMOVE)


class ReconcileStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class OperationOutcome:
    operation: RuleOperation
    succeeded: bool
    error: RemoteError | None = None


@dataclass
class ReconcileReport:
    outcomes: list[OperationOutcome] = field(default_factory=list)
    skipped: list[RuleOperation] = field(default_factory=list)

    @property
    def succeeded(self) -> list[OperationOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> list[OperationOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def cleanup_failures(self) -> list[OperationOutcome]:
        return [o for o in self.failed if not o.operation.required]

    @property
    def required_failures(self) -> list[OperationOutcome]:
        return [o for o in self.failed if o.operation.required]

    @property
    def status(self) -> ReconcileStatus:
        if self.required_failures:
            return ReconcileStatus.FAILED
        if self.cleanup_failures:
            return ReconcileStatus.PARTIAL
        return ReconcileStatus.SUCCESS

    def summary(self) -> str:
        text = f"{len(self.succeeded)} operation(s) succeeded, {len(self.failed)} failed"
        if self.skipped:
            text += f", {len(self.skipped)} skipped"
        return text


class RemoteRuleReconciler:
    """Moves the remote managed rules to the state implied by a chunk plan."""

    def __init__(
        self,
        client,
        mode: RuleMode,
        hostname: str | None = None,
        retry_policy: RetryPolicy | None = None,
        skip_removal: bool = False,
        sleep: Callable[[float], None] | None = None,
    ):
        """Initialize reconciler.

        Args:
            client: FirewallClient (or compatible) used for remote calls
            mode: Rule mode deciding rule name, operator and action
            hostname: Optional hostname the rules are scoped to
            retry_policy: Retry policy applied to every remote call
            skip_removal: Leave existing rules in place when re-chunking
            sleep: Sleep function used between retries
        """
        self.client = client
        self.mode = mode
        self.hostname = hostname or None
        self.retry_policy = retry_policy or RetryPolicy()
        self.skip_removal = skip_removal
        self._retry_kwargs = {"sleep": sleep} if sleep is not None else {}

    @property
    def base_name(self) -> str:
        return self.mode.rule_name

    def discover(self) -> list[RemoteRule]:
        config = self.retry_policy.call(
            self.client.get_firewall_config,
            "Fetching firewall config",
            **self._retry_kwargs,
        )
        return find_managed_rules(config, self.base_name)

    def plan(self, existing: list[RemoteRule], chunk_plan: ChunkPlan) -> ReconcilePlan:
        """Compute the operations needed; no I/O."""
        existing = list(existing)
        names = chunk_plan.rule_names(self.base_name)

        if not chunk_plan.needs_chunking and len(existing) <= 1:
            chunk = chunk_plan.chunks[0]
            if existing:
                rule = existing[0]
                logger.info(
                    f"Found existing rule (ID: {rule.id}), "
                    f"current IP count: {len(rule.ip_addresses)}"
                )
                op = RuleOperation(OperationKind.UPDATE, names[0], rule.id, chunk)
            else:
                logger.info("No existing rule found. Will create a new rule.")
                op = RuleOperation(OperationKind.INSERT, names[0], None, chunk)
            return ReconcilePlan(operations=(op,), existing=tuple(existing))

        operations: list[RuleOperation] = []
        if existing:
            if chunk_plan.needs_chunking:
                logger.info(
                    f"Found {len(existing)} existing rule(s). "
                    "Will remove and recreate with new chunking."
                )
            else:
                logger.warning(
                    f"Found {len(existing)} duplicate rules. "
                    "Will clean up and create a fresh rule."
                )
            if self.skip_removal:
                logger.warning(
                    f"Skipping removal of {len(existing)} existing rule(s). "
                    "Duplicate rules may remain; clean up manually."
                )
            else:
                operations.extend(
                    RuleOperation(OperationKind.REMOVE, rule.name, rule.id)
                    for rule in existing
                )

        operations.extend(
            RuleOperation(OperationKind.INSERT, name, None, chunk)
            for name, chunk in zip(names, chunk_plan.chunks)
        )
        return ReconcilePlan(operations=tuple(operations), existing=tuple(existing))

    def _execute_one(self, op: RuleOperation) -> None:
        if op.kind is OperationKind.REMOVE:
            self.client.remove_rule(op.rule_id)
            return
        value = DesiredRule(op.name, op.addresses).to_value(self.mode, self.hostname)
        if op.kind is OperationKind.UPDATE:
            self.client.update_rule(op.rule_id, value)
        else:
            self.client.insert_rule(value)

    def execute(self, plan: ReconcilePlan) -> ReconcileReport:
        """Run the planned operations one by one.

        A failed removal is recorded and execution continues. A failed insert
        or update stops execution; remaining operations are reported as
        skipped.
        """
        report = ReconcileReport()
        operations = list(plan.operations)

        for index, op in enumerate(operations):
            logger.info(f"Executing: {op.describe()}")
            try:
                self.retry_policy.call(
                    lambda: self._execute_one(op), op.describe(), **self._retry_kwargs
                )
            except RemoteError as e:
                report.outcomes.append(OperationOutcome(op, False, e))
                if not op.required:
                    logger.warning(
                        f"Failed to remove rule {op.rule_id}: {e} (will continue anyway)"
                    )
                    continue
                logger.error(f"Failed to {op.kind.value} rule '{op.name}': {e}")
                report.skipped.extend(operations[index + 1 :])
                break
            report.outcomes.append(OperationOutcome(op, True))

        if report.cleanup_failures:
            logger.warning(
                f"{len(report.cleanup_failures)} rule(s) could not be removed. "
                "You may need to remove them manually via the dashboard."
            )
        logger.info(f"Reconciliation {report.status.value}: {report.summary()}")
        return report

    def reconcile(self, chunk_plan: ChunkPlan) -> ReconcileReport:
        """Discover, plan and execute in one pass."""
        return self.execute(self.plan(self.discover(), chunk_plan))

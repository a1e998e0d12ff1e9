"""Splitting address lists into capacity-bounded chunks."""

from dataclasses import dataclass

from .models import AddressEntry


def rules_needed(count: int, capacity: int) -> int:
    """Number of rules needed for ``count`` entries, ``ceil(count / capacity)``."""
    return (count + capacity - 1) // capacity


def part_name(base_name: str, index: int, total: int) -> str:
    """Name of chunk ``index`` (1-based) out of ``total``."""
    return f"{base_name} (Part {index}/{total})"


@dataclass(frozen=True)
class ChunkPlan:
    chunks: tuple[tuple[AddressEntry, ...], ...]
    capacity: int

    @property
    def needs_chunking(self) -> bool:
        return len(self.chunks) > 1

    @property
    def rules_needed(self) -> int:
        return len(self.chunks)

    @property
    def total(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)

    @property
    def sizes(self) -> list[int]:
        return [len(chunk) for chunk in self.chunks]

    def rule_names(self, base_name: str) -> list[str]:
        if not self.needs_chunking:
            return [base_name]
        total = len(self.chunks)
        return [part_name(base_name, i, total) for i in range(1, total + 1)]


class CapacityPlanner:
    """Cuts an ordered address list into contiguous slices of at most
    ``capacity`` entries each."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"Capacity must be positive, got {capacity}")
        self.capacity = capacity

    def plan(self, entries: list[AddressEntry]) -> ChunkPlan:
        if not entries:
            raise ValueError("Cannot plan chunks for an empty address list")
        chunks = tuple(
            tuple(entries[start : start + self.capacity])
            for start in range(0, len(entries), self.capacity)
        )
        return ChunkPlan(chunks=chunks, capacity=self.capacity)

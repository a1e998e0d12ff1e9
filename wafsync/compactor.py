"""Lossless CIDR compaction of IPv4 address lists.

Individual addresses are merged into the fewest aligned CIDR blocks that cover
exactly the same addresses. Blocks present in the input are passed through
untouched; nothing is ever widened beyond the original coverage.
"""

import ipaddress
from dataclasses import dataclass
from typing import Iterable

from .models import AddressEntry


class CidrCompactor:
    """Exact (coverage-preserving) compaction of singleton addresses."""

    @staticmethod
    def largest_aligned_block(address: int, remaining: int) -> int:
        """Return the size of the largest CIDR block usable at ``address``.

        The block size is a power of two that divides ``address`` (CIDR
        alignment) and does not exceed ``remaining``.

        Example:
            >>> CidrCompactor.largest_aligned_block(8, 100)
            8
            >>> CidrCompactor.largest_aligned_block(1, 100)
            1
        """
        size = 1
        while size * 2 <= remaining and address % (size * 2) == 0:
            size *= 2
        return size

    @staticmethod
    def find_runs(addresses: list[int]) -> list[tuple[int, int]]:
        """Split sorted, unique integers into maximal consecutive runs.

        Returns:
            List of ``(start, length)`` tuples
        """
        runs: list[tuple[int, int]] = []
        if not addresses:
            return runs

        start = previous = addresses[0]
        for address in addresses[1:]:
            if address == previous + 1:
                previous = address
                continue
            runs.append((start, previous - start + 1))
            start = previous = address
        runs.append((start, previous - start + 1))
        return runs

    @staticmethod
    def cover_run(start: int, length: int) -> list[AddressEntry]:
        """Cover a run of consecutive addresses with aligned CIDR blocks.

        Example:
            >>> [str(e) for e in CidrCompactor.cover_run(167772161, 3)]
            ['10.0.0.1', '10.0.0.2/31']
        """
        blocks = []
        cursor = start
        remaining = length
        while remaining > 0:
            size = CidrCompactor.largest_aligned_block(cursor, remaining)
            blocks.append(AddressEntry(cursor, 32 - (size.bit_length() - 1)))
            cursor += size
            remaining -= size
        return blocks

    @staticmethod
    def _outermost_blocks(blocks: Iterable[AddressEntry]) -> list[AddressEntry]:
        # CIDR blocks are either nested or disjoint, so after sorting by
        # (first, prefix) a block is redundant iff it ends inside the last kept one
        kept: list[AddressEntry] = []
        for block in sorted(set(blocks), key=lambda b: (b.first, b.prefix, b.base)):
            if kept and block.last <= kept[-1].last:
                continue
            kept.append(block)
        return kept

    @classmethod
    def compact(cls, entries: Iterable[AddressEntry]) -> list[AddressEntry]:
        """Compact a list of addresses and blocks.

        Args:
            entries: Address entries (singletons and/or CIDR blocks)

        Returns:
            Sorted, deduplicated list covering exactly the same addresses

        Example:
            >>> result = CidrCompactor.compact(
            ...     [AddressEntry.from_string(f"10.0.0.{i}") for i in range(4)]
            ... )
            >>> [str(e) for e in result]
            ['10.0.0.0/30']
        """
        entries = list(entries)
        blocks = cls._outermost_blocks(e for e in entries if not e.is_singleton)
        singles = sorted(
            {
                e.base
                for e in entries
                if e.is_singleton and not any(b.contains(e) for b in blocks)
            }
        )

        merged: list[AddressEntry] = []
        for start, length in cls.find_runs(singles):
            merged.extend(cls.cover_run(start, length))

        return sorted(set(merged) | set(blocks))

    @staticmethod
    def verify_coverage(
        original: Iterable[AddressEntry],
        compacted: Iterable[AddressEntry],
    ) -> tuple[bool, list[str]]:
        """Verify that compaction neither lost nor gained any address.

        Args:
            original: Entries before compaction
            compacted: Entries after compaction

        Returns:
            Tuple of (coverage_is_equal, list_of_mismatched_ranges)
        """
        before = list(ipaddress.collapse_addresses(e.network for e in original))
        after = list(ipaddress.collapse_addresses(e.network for e in compacted))
        if before == after:
            return (True, [])

        mismatched = [str(net) for net in before if net not in after]
        mismatched.extend(str(net) for net in after if net not in before)
        return (False, mismatched)


@dataclass(frozen=True)
class CompactionStats:
    """Before/after numbers for a compaction run."""

    original_count: int
    optimized_count: int
    cidr_count: int
    single_count: int

    @property
    def reduction(self) -> int:
        return self.original_count - self.optimized_count

    @property
    def reduction_pct(self) -> int:
        if self.original_count == 0:
            return 0
        return self.reduction * 100 // self.original_count

    @classmethod
    def measure(
        cls, original: list[AddressEntry], optimized: list[AddressEntry]
    ) -> "CompactionStats":
        cidr_count = sum(1 for e in optimized if not e.is_singleton)
        return cls(
            original_count=len(original),
            optimized_count=len(optimized),
            cidr_count=cidr_count,
            single_count=len(optimized) - cidr_count,
        )


def compact_addresses(entries: Iterable[AddressEntry]) -> list[AddressEntry]:
    """Compact address entries. Convenience wrapper for CidrCompactor."""
    return CidrCompactor.compact(entries)

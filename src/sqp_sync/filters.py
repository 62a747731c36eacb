"""
ASIN Filter Strategies
======================
Decide which ASINs are in scope for a sync run.

Each strategy resolves a candidate distribution (per-ASIN impression
volume for the window) into a deterministic, ranked list of ASINs.
"""

import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Protocol, runtime_checkable

from sqp_sync.transform.records import normalize_asin, safe_int


@runtime_checkable
class AsinFilter(Protocol):
    """Contract shared by all strategies."""

    name: str

    @property
    def needs_distribution(self) -> bool:
        """Whether resolve() requires the warehouse distribution."""
        ...

    def resolve(self, distribution: Iterable[dict]) -> list[str]:
        """Return the in-scope ASINs, ranked."""
        ...

    def describe(self) -> str: ...


def rank_candidates(distribution: Iterable[dict]) -> list[tuple[str, int]]:
    """
    Merge and rank candidates by impressions desc, ties by ASIN asc.

    Args:
        distribution: Rows with 'asin' and 'impressions'
    """
    volume: dict[str, int] = defaultdict(int)
    for row in distribution:
        asin = normalize_asin(row.get("asin"))
        if asin:
            volume[asin] += safe_int(row.get("impressions"))
    return sorted(volume.items(), key=lambda item: (-item[1], item[0]))


@dataclass(frozen=True)
class AllAsins:
    name: str = "all"

    @property
    def needs_distribution(self) -> bool:
        return False

    def resolve(self, distribution: Iterable[dict]) -> list[str]:
        return [asin for asin, _ in rank_candidates(distribution)]

    def describe(self) -> str:
        return "All ASINs"


@dataclass(frozen=True)
class TopAsins:
    count: int
    name: str = "top"

    def __post_init__(self):
        if self.count < 1:
            raise ValueError("Top strategy needs count >= 1")

    @property
    def needs_distribution(self) -> bool:
        return True

    def resolve(self, distribution: Iterable[dict]) -> list[str]:
        return [asin for asin, _ in rank_candidates(distribution)[: self.count]]

    def describe(self) -> str:
        return f"Top {self.count} ASINs by impressions"


@dataclass(frozen=True)
class SpecificAsins:
    asins: frozenset
    name: str = "specific"

    def __post_init__(self):
        object.__setattr__(self, "asins", frozenset(normalize_asin(a) for a in self.asins if a))

    @property
    def needs_distribution(self) -> bool:
        return True

    def resolve(self, distribution: Iterable[dict]) -> list[str]:
        # Unknown ASINs are dropped, not errors
        return [asin for asin, _ in rank_candidates(distribution) if asin in self.asins]

    def describe(self) -> str:
        return f"Specific ASINs: {', '.join(sorted(self.asins))}"


def volume_bucket(impressions: int) -> int:
    """Log10 bucket of an impression count; zero-volume ASINs share bucket -1."""
    return int(math.floor(math.log10(impressions))) if impressions > 0 else -1


@dataclass(frozen=True)
class RepresentativeAsins:
    """
    Sample head, mid and tail products.

    Candidates are bucketed by order of magnitude of impressions. When count
    covers every bucket, each non-empty bucket contributes at least one ASIN;
    leftover slots are filled round-robin from the head down.
    """

    count: int
    name: str = "representative"

    def __post_init__(self):
        if self.count < 1:
            raise ValueError("Representative strategy needs count >= 1")

    @property
    def needs_distribution(self) -> bool:
        return True

    def resolve(self, distribution: Iterable[dict]) -> list[str]:
        ranked = rank_candidates(distribution)
        if len(ranked) <= self.count:
            return [asin for asin, _ in ranked]

        buckets: dict[int, list[tuple[str, int]]] = defaultdict(list)
        for asin, impressions in ranked:
            buckets[volume_bucket(impressions)].append((asin, impressions))
        ordered = [buckets[b] for b in sorted(buckets, reverse=True)]

        if self.count < len(ordered):
            # Spread picks evenly from head to tail
            if self.count == 1:
                picks = [0]
            else:
                step = (len(ordered) - 1) / (self.count - 1)
                picks = sorted({round(i * step) for i in range(self.count)})
            ordered = [ordered[i] for i in picks]

        chosen: list[tuple[str, int]] = []
        depth = 0
        while len(chosen) < self.count:
            added = False
            for bucket in ordered:
                if depth < len(bucket) and len(chosen) < self.count:
                    chosen.append(bucket[depth])
                    added = True
            if not added:
                break
            depth += 1

        chosen.sort(key=lambda item: (-item[1], item[0]))
        return [asin for asin, _ in chosen]

    def describe(self) -> str:
        return f"Representative sample of {self.count} ASINs"


def parse_filter(name: str, count: int = 10, asins: Iterable[str] | None = None) -> AsinFilter:
    """
    Build a strategy from CLI-style options.

    Raises:
        ValueError: unknown strategy, or 'specific' without ASINs
    """
    name = (name or "all").lower()
    if name == "all":
        return AllAsins()
    if name == "top":
        return TopAsins(count)
    if name == "representative":
        return RepresentativeAsins(count)
    if name == "specific":
        if not asins:
            raise ValueError("The specific strategy requires at least one ASIN")
        return SpecificAsins(frozenset(asins))
    raise ValueError(f"Unknown ASIN filter strategy: {name}")

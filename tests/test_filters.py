"""
Tests for ASIN filter strategies.
"""

import pytest

from sqp_sync.filters import (
    AllAsins,
    AsinFilter,
    RepresentativeAsins,
    SpecificAsins,
    TopAsins,
    parse_filter,
    rank_candidates,
    volume_bucket,
)

DISTRIBUTION = [
    {"asin": "B00000000A", "impressions": 100000},
    {"asin": "B00000000B", "impressions": 90000},
    {"asin": "B00000000C", "impressions": 5000},
    {"asin": "B00000000D", "impressions": 300},
    {"asin": "B00000000E", "impressions": 20},
    {"asin": "B00000000F", "impressions": 0},
]


class TestRanking:
    def test_ties_broken_by_asin(self):
        ranked = rank_candidates(
            [{"asin": "B000000002", "impressions": 5}, {"asin": "B000000001", "impressions": 5}]
        )
        assert [a for a, _ in ranked] == ["B000000001", "B000000002"]

    def test_merges_duplicate_asins(self):
        ranked = rank_candidates(
            [{"asin": "b000000001", "impressions": 5}, {"asin": "B000000001", "impressions": 7}]
        )
        assert ranked == [("B000000001", 12)]


class TestTopAsins:
    def test_deterministic(self):
        strategy = TopAsins(5)
        assert strategy.resolve(DISTRIBUTION) == strategy.resolve(list(reversed(DISTRIBUTION)))

    def test_takes_highest_volume(self):
        assert TopAsins(2).resolve(DISTRIBUTION) == ["B00000000A", "B00000000B"]

    def test_count_larger_than_candidates(self):
        assert len(TopAsins(50).resolve(DISTRIBUTION)) == len(DISTRIBUTION)

    def test_rejects_zero(self):
        with pytest.raises(ValueError):
            TopAsins(0)


class TestSpecificAsins:
    def test_normalizes_and_drops_unknown(self):
        strategy = SpecificAsins(frozenset({" b00000000c", "B00000000Z"}))
        assert strategy.resolve(DISTRIBUTION) == ["B00000000C"]


class TestRepresentativeAsins:
    def test_volume_bucket(self):
        assert volume_bucket(100000) == 5
        assert volume_bucket(9) == 0
        assert volume_bucket(0) == -1

    def test_one_per_bucket(self):
        # Buckets: 5 (A), 4 (G, B), 3 (C), 2 (D), 1 (E), -1 (F)
        chosen = RepresentativeAsins(6).resolve(DISTRIBUTION + [{"asin": "B00000000G", "impressions": 95000}])
        assert set(chosen) == {"B00000000A", "B00000000G", "B00000000C", "B00000000D", "B00000000E", "B00000000F"}

    def test_fewer_slots_than_buckets_spans_head_to_tail(self):
        chosen = RepresentativeAsins(2).resolve(DISTRIBUTION)
        assert chosen == ["B00000000A", "B00000000F"]

    def test_small_candidate_set_returned_whole(self):
        assert RepresentativeAsins(10).resolve(DISTRIBUTION[:3]) == ["B00000000A", "B00000000B", "B00000000C"]

    def test_deterministic(self):
        strategy = RepresentativeAsins(3)
        assert strategy.resolve(DISTRIBUTION) == strategy.resolve(list(reversed(DISTRIBUTION)))


class TestParseFilter:
    def test_all_strategies_satisfy_protocol(self):
        for strategy in (AllAsins(), TopAsins(1), SpecificAsins(frozenset({"B000000001"})), RepresentativeAsins(1)):
            assert isinstance(strategy, AsinFilter)

    def test_all_needs_no_distribution(self):
        assert parse_filter("all").needs_distribution is False

    def test_top(self):
        assert parse_filter("top", count=3) == TopAsins(3)

    def test_specific_requires_asins(self):
        with pytest.raises(ValueError):
            parse_filter("specific")

    def test_unknown(self):
        with pytest.raises(ValueError):
            parse_filter("random")

from __future__ import annotations

import itertools

import pytest

from selector_score import (
    LEADING_ZERO_BYTES,
    NUMERIC_RANK,
    TARGET_PREFIX,
    CostTable,
    ScoreModel,
    SelectorCollision,
    leading_zero_bytes,
    meets_threshold,
    rank_position,
    score,
)


def sel(text: str) -> bytes:
    return bytes.fromhex(text)


class TestLeadingZeroBytes:
    @pytest.mark.parametrize(
        "selector, expected",
        [("a9059cbb", 0), ("00059cbb", 1), ("0000fee6", 2), ("000000ff", 3), ("00000000", 4), ("00ff0000", 1)],
    )
    def test_counts(self, selector: str, expected: int) -> None:
        assert leading_zero_bytes(sel(selector)) == expected

    def test_range_and_maximum(self) -> None:
        model = ScoreModel()
        for raw in itertools.product([0, 1, 255], repeat=4):
            result = score(bytes(raw), model)
            assert 0 <= result.value <= 4
            assert (result.value == 4) == (bytes(raw) == bytes(4))

    def test_lower_selector_breaks_ties(self) -> None:
        model = ScoreModel(LEADING_ZERO_BYTES)
        low = score(sel("0000fee6"), model)
        high = score(sel("0000ffff"), model)
        more_zeros = score(sel("000000ff"), model)
        assert low.key > high.key
        assert more_zeros.key > low.key


class TestNumericRank:
    siblings = (sel("10000000"), sel("20000000"), sel("30000000"))

    def test_position_without_table(self) -> None:
        model = ScoreModel(NUMERIC_RANK, siblings=self.siblings)
        assert score(sel("05000000"), model).value == 0
        assert score(sel("15000000"), model).value == 1
        assert score(sel("ffffffff"), model).value == 3

    def test_cost_table(self) -> None:
        table = CostTable.linear(4, step_gas=22, base_gas=10)
        model = ScoreModel(NUMERIC_RANK, siblings=self.siblings, cost_table=table)
        first = score(sel("05000000"), model)
        third = score(sel("25000000"), model)
        assert first.value == 10
        assert first.detail == 0
        assert third.value == 54
        assert third.detail == 2
        assert first.key > third.key

    def test_cost_table_past_end_uses_last_entry(self) -> None:
        table = CostTable((0, 5))
        assert table.cost(0) == 0
        assert table.cost(7) == 5

    def test_maximize(self) -> None:
        model = ScoreModel(NUMERIC_RANK, siblings=self.siblings, direction="maximize")
        assert score(sel("ffffffff"), model).key > score(sel("05000000"), model).key

    def test_same_position_prefers_lower_when_minimizing(self) -> None:
        model = ScoreModel(NUMERIC_RANK, siblings=self.siblings)
        assert score(sel("01000000"), model).key > score(sel("02000000"), model).key

    def test_collision_with_sibling(self) -> None:
        model = ScoreModel(NUMERIC_RANK, siblings=self.siblings)
        with pytest.raises(SelectorCollision):
            score(sel("20000000"), model)

    def test_siblings_argument_overrides_model(self) -> None:
        model = ScoreModel(NUMERIC_RANK, siblings=self.siblings)
        assert score(sel("15000000"), model, siblings=[sel("00000001")]).value == 1

    def test_requires_siblings(self) -> None:
        with pytest.raises(ValueError):
            ScoreModel(NUMERIC_RANK)

    def test_rank_position(self) -> None:
        assert rank_position(5, [1, 3, 7]) == 2
        assert rank_position(0, []) == 0


class TestTargetPrefix:
    def test_full_and_partial_match(self) -> None:
        model = ScoreModel(TARGET_PREFIX, prefix=sel("a905"))
        full = score(sel("a9059cbb"), model)
        partial = score(sel("a9ff0000"), model)
        miss = score(sel("00059cbb"), model)
        assert full.matched and full.value == 2
        assert not partial.matched and partial.value == 1
        assert miss.value == 0
        assert full.key > partial.key > miss.key

    def test_prefix_length_checked(self) -> None:
        with pytest.raises(ValueError):
            ScoreModel(TARGET_PREFIX, prefix=b"")
        with pytest.raises(ValueError):
            ScoreModel(TARGET_PREFIX, prefix=bytes(5))


class TestThreshold:
    def test_leading_zero_threshold(self) -> None:
        model = ScoreModel()
        assert meets_threshold(score(sel("0000fee6"), model), model, 2)
        assert not meets_threshold(score(sel("00fee600"), model), model, 2)
        assert not meets_threshold(score(sel("00000000"), model), model, None)

    def test_rank_threshold_direction(self) -> None:
        siblings = (sel("80000000"),)
        low = ScoreModel(NUMERIC_RANK, siblings=siblings)
        high = ScoreModel(NUMERIC_RANK, siblings=siblings, direction="maximize")
        assert meets_threshold(score(sel("01000000"), low), low, 0)
        assert not meets_threshold(score(sel("90000000"), low), low, 0)
        assert meets_threshold(score(sel("90000000"), high), high, 1)

    def test_prefix_threshold(self) -> None:
        model = ScoreModel(TARGET_PREFIX, prefix=sel("a905"))
        assert meets_threshold(score(sel("a9059cbb"), model), model, 2)
        assert not meets_threshold(score(sel("a9ff9cbb"), model), model, 2)


def test_unknown_model() -> None:
    with pytest.raises(ValueError):
        ScoreModel("weighted")


def test_cost_table_from_json() -> None:
    assert CostTable.from_json([22, 44]).costs == (22, 44)
    assert CostTable.from_json({"costs": [1]}).costs == (1,)
    with pytest.raises(ValueError):
        CostTable.from_json(["a"])
    with pytest.raises(ValueError):
        CostTable.from_json([])

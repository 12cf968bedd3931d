import random
import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import numpy as np
import pytest

from bnb_trace import (
    BestPolicy,
    BranchAndBoundSearch,
    InvalidInputError,
    Outcome,
    StepType,
    search,
)
from bnb_trace.paths import selection_from_path

T, F = True, False

EX4_VALUES = [100000, 60000, 55000, 50000, 25000, 10000]


def _kinds(sc):
    return [st.kind for st in sc.steps]


def _cases():
    rng = random.Random(7)
    cases = [
        ([100], 100, 0),
        ([10, 10], 25, 0),
        ([60, 50, 25], 110, 0),
        (EX4_VALUES, 110000, 0),
        (EX4_VALUES, 110000, 5000),
        ([60, 40, 30, 15], 100, 10),
        ([5, 5, 5, 5], 10, 0),
        ([0, 3, 0], 3, 0),
        ([7, 1], 0, 0),
    ]
    for _ in range(6):
        vals = [rng.randint(1, 50) for _ in range(rng.randint(1, 7))]
        cases.append((vals, rng.randint(0, sum(vals)), rng.randint(0, 5)))
    return cases


CASES = _cases()


def test_single_value_exact_match():
    sc = search([100], 100)
    assert sc.outcome is Outcome.SUCCESS
    assert _kinds(sc) == [
        StepType.INCLUDE, StepType.SOLUTION, StepType.EXCLUDE,
        StepType.BACKTRACK, StepType.COMPLETE,
    ]
    sols = [st for st in sc.steps if st.kind is StepType.SOLUTION]
    assert len(sols) == 1
    assert sols[0].path == (T,)
    assert sc.best_path == (T,)
    assert sc.best_selection == (0,)


def test_unreachable_target_fails():
    sc = search([10, 10], 25)
    assert sc.outcome is Outcome.FAILURE
    assert sc.best_path is None and sc.best_selection is None
    assert sc.candidates == ()
    assert _kinds(sc) == [StepType.PRUNE_SUM, StepType.COMPLETE]
    assert sc.steps[-1].description == "Search complete. No solution found."


def test_search_continues_after_candidate():
    # input order is irrelevant: values are sorted descending first
    sc = search([25, 60, 50], 110)
    assert sc.values == (60, 50, 25)
    assert [u.original_index for u in sc.utxos] == [1, 2, 0]
    assert [(st.kind, st.path) for st in sc.steps] == [
        (StepType.INCLUDE, (T,)),
        (StepType.INCLUDE, (T, T)),
        (StepType.SOLUTION, (T, T)),
        (StepType.EXCLUDE, (T, F)),
        (StepType.PRUNE_SUM, (T, F)),
        (StepType.EXCLUDE, (F,)),
        (StepType.PRUNE_SUM, (F,)),
        (StepType.COMPLETE, ()),
    ]
    assert len(sc.candidates) == 1
    cand = sc.candidates[0]
    assert cand.path == (T, T) and cand.value == 110 and cand.step_index == 2
    assert sc.best_selection == (0, 1)
    assert sc.best_original_indices == (1, 2)
    assert sc.best_value == 110


def test_default_scenario_best_is_last_found():
    sc = search(EX4_VALUES, 110000)
    assert sc.outcome is Outcome.SUCCESS
    assert [c.path for c in sc.candidates] == [(T, F, F, F, F, T), (F, T, F, T)]
    assert all(c.value == 110000 for c in sc.candidates)
    assert sc.best_path == sc.candidates[-1].path == (F, T, F, T)
    assert sc.best_selection == (1, 3)
    assert sc.best_value == 110000


def test_tolerance_accepts_overshoot_but_not_undershoot():
    sc = search([60, 40, 30, 15], 100, tolerance=10)
    assert [(c.path, c.value) for c in sc.candidates] == [((T, T), 100), ((T, F, T, T), 105)]
    # exhaustion is checked before the overshoot prune
    assert search([30, 30], 50, tolerance=5).outcome is Outcome.FAILURE


@pytest.mark.parametrize(
    "policy, expected_path, expected_value",
    [
        ("last", (T, F, T, T), 105),
        ("least_excess", (T, T), 100),
        (BestPolicy.FEWEST_INPUTS, (T, T), 100),
    ],
)
def test_best_policies(policy, expected_path, expected_value):
    sc = search([60, 40, 30, 15], 100, tolerance=10, policy=policy)
    assert sc.best_path == expected_path
    assert sc.best_value == expected_value
    assert len(sc.candidates) == 2


def test_fewest_inputs_prefers_earlier_smaller_selection():
    sc = search([60, 50, 30, 20], 110, policy="fewest_inputs")
    assert [c.path for c in sc.candidates] == [(T, T), (T, F, T, T)]
    assert sc.best_path == (T, T)
    assert search([60, 50, 30, 20], 110).best_path == (T, F, T, T)


def test_zero_target_is_solved_at_root():
    sc = search([7, 1], 0)
    assert sc.steps[0].kind is StepType.SOLUTION
    assert sc.steps[0].path == () and sc.steps[0].value_index == -1
    assert sc.steps[0].remaining_value == 8
    assert sc.best_path == () and sc.best_selection == ()
    assert _kinds(sc) == [StepType.SOLUTION, StepType.COMPLETE]


def test_stable_descending_sort_with_ties():
    sc = search([5, 9, 5, 9, 1], 10)
    assert sc.values == (9, 9, 5, 5, 1)
    assert [u.original_index for u in sc.utxos] == [1, 3, 0, 2, 4]
    assert [u.index for u in sc.utxos] == [0, 1, 2, 3, 4]


def test_emit_start_marker():
    sc = search([60, 50, 25], 110, emit_start=True)
    assert sc.steps[0].kind is StepType.START
    assert sc.steps[0].path == () and sc.steps[0].depth == 0
    assert [st.step_id for st in sc.steps] == list(range(len(sc.steps)))
    assert sc.candidates[0].step_index == 3
    assert sc.steps[3].kind is StepType.SOLUTION
    assert sum(st.kind is StepType.START for st in search([60, 50, 25], 110).steps) == 0


def test_step_cap_without_candidate_is_exhausted():
    sc = search(EX4_VALUES, 110000, max_steps=3)
    assert sc.exhausted
    assert sc.outcome is Outcome.EXHAUSTED
    assert _kinds(sc) == [StepType.INCLUDE, StepType.INCLUDE, StepType.PRUNE_VAL, StepType.COMPLETE]
    assert sc.best_path is None


def test_step_cap_after_candidate_keeps_best_so_far():
    full = search(EX4_VALUES, 110000)
    first = full.candidates[0]
    sc = search(EX4_VALUES, 110000, max_steps=first.step_index + 1)
    assert sc.exhausted
    assert sc.outcome is Outcome.SUCCESS
    assert sc.candidates == (first,)
    assert sc.best_path == first.path
    # the capped trace is a prefix of the full one
    assert sc.steps[:-1] == full.steps[:first.step_index + 1]
    assert sc.steps[-1].kind is StepType.COMPLETE


def test_step_cap_not_reached():
    sc = search(EX4_VALUES, 110000, max_steps=10_000)
    assert not sc.exhausted
    assert sc.steps == search(EX4_VALUES, 110000).steps


def test_numpy_inputs_accepted():
    sc = search(np.array(EX4_VALUES, dtype=np.int64), np.int64(110000))
    assert sc.best_path == (F, T, F, T)
    assert all(type(v) is int for v in sc.values)


@pytest.mark.parametrize(
    "values, target, kwargs",
    [
        ([], 10, {}),
        ([5, -1], 4, {}),
        ([5], -1, {}),
        ([5], 5, {"tolerance": -1}),
        ([1.5, 2], 3, {}),
        ([True, 2], 3, {}),
        (["5"], 5, {}),
        ([5], 5, {"policy": "cheapest"}),
        ([5], 5, {"max_steps": 0}),
        ([2 ** 62, 2 ** 62], 1, {}),
        (None, 1, {}),
    ],
)
def test_invalid_inputs_rejected(values, target, kwargs):
    with pytest.raises(InvalidInputError):
        search(values, target, **kwargs)


def test_invalid_input_is_a_value_error():
    with pytest.raises(ValueError):
        BranchAndBoundSearch(tolerance=-3)


@pytest.mark.parametrize("values, target, tolerance", CASES)
def test_deterministic(values, target, tolerance):
    a = search(values, target, tolerance)
    b = search(list(values), target, tolerance)
    assert a == b


@pytest.mark.parametrize("values, target, tolerance", CASES)
def test_trace_invariants(values, target, tolerance):
    sc = search(values, target, tolerance)
    vals = sc.values
    n = len(vals)

    assert all(vals[i] >= vals[i + 1] for i in range(n - 1))
    assert sorted(vals) == sorted(values)
    assert [st.step_id for st in sc.steps] == list(range(len(sc.steps)))

    kinds = _kinds(sc)
    assert kinds[-1] is StepType.COMPLETE
    assert kinds.count(StepType.COMPLETE) == 1
    assert StepType.START not in kinds

    for st in sc.steps:
        assert st.current_sum == sum(v for v, b in zip(vals, st.path) if b)
        assert st.selection == selection_from_path(st.path)
        assert st.remaining_value == sum(vals[st.value_index + 1:])
        assert len(st.path) <= n

        if st.kind is StepType.SOLUTION:
            s = st.current_sum
            assert s == target or target < s <= target + tolerance

        if st.kind in (StepType.INCLUDE, StepType.EXCLUDE):
            j = st.value_index
            parent_sum = st.current_sum - (vals[j] if st.kind is StepType.INCLUDE else 0)
            assert st.depth == j == len(st.path) - 1
            # no prune condition held at the node being expanded
            assert parent_sum + sum(vals[j:]) >= target
            assert parent_sum <= target + tolerance
            assert not (parent_sum == target or target < parent_sum <= target + tolerance)

    assert (sc.outcome is Outcome.SUCCESS) == bool(sc.candidates)
    for cand in sc.candidates:
        st = sc.steps[cand.step_index]
        assert st.kind is StepType.SOLUTION
        assert st.path == cand.path and st.current_sum == cand.value
    if sc.candidates:
        assert sc.best_path == sc.candidates[-1].path
        assert sc.best_selection == sc.candidates[-1].selection


def test_searches_do_not_share_state():
    a = search([60, 50, 25], 110)
    search(EX4_VALUES, 110000)
    b = search([60, 50, 25], 110)
    assert a.steps[0].step_id == b.steps[0].step_id == 0
    assert a == b


def test_engine_is_reusable():
    engine = BranchAndBoundSearch(tolerance=10, policy="least_excess")
    first = engine.run([60, 40, 30, 15], 100)
    second = engine.run([60, 40, 30, 15], 100)
    assert first == second
    assert first.policy is BestPolicy.LEAST_EXCESS
    assert first.tolerance == 10


def test_deep_value_list_runs_without_recursion():
    vals = [1] * 1500
    sc = search(vals, 1500)
    assert sc.outcome is Outcome.SUCCESS
    assert sc.best_path == (T,) * 1500

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np

from bnb_trace.errors import InvalidInputError
from bnb_trace.paths import Path
from bnb_trace.scenario import BestPolicy, Outcome, Scenario, Utxo
from bnb_trace.trace import SolutionCandidate, StepType, TraceRecorder

logger = logging.getLogger(__name__)

# Largest representable sum(values) + target + tolerance (suffix sums are int64).
MAX_TOTAL = 2 ** 63 - 1

_VISIT = 0
_EXCLUDE = 1


@dataclass(frozen=True, slots=True)
class _Frame:
    """One node of the implicit include/exclude tree."""
    depth: int
    selection: Tuple[int, ...]
    current_sum: int
    next_index: int
    path: Path


class _BestTracker:
    """Keeps the best candidate seen so far under a :class:`BestPolicy`."""

    __slots__ = ("policy", "target", "selection", "path", "_key")

    def __init__(self, policy: BestPolicy, target: int) -> None:
        self.policy = policy
        self.target = target
        self.selection: Optional[Tuple[int, ...]] = None
        self.path: Optional[Path] = None
        self._key: Optional[int] = None

    def _rank(self, cand: SolutionCandidate) -> int:
        if self.policy is BestPolicy.LEAST_EXCESS:
            return cand.value - self.target
        return len(cand.selection)

    def offer(self, cand: SolutionCandidate) -> bool:
        if self.policy is BestPolicy.LAST_FOUND or self.path is None:
            take = True
        else:
            take = self._rank(cand) < self._key
        if take:
            self.selection = cand.selection
            self.path = cand.path
            self._key = None if self.policy is BestPolicy.LAST_FOUND else self._rank(cand)
        return take


def _as_amount(x: Any, name: str) -> int:
    if isinstance(x, (bool, np.bool_)):
        raise InvalidInputError(f"{name} must be an integer amount, got bool")
    try:
        v = operator.index(x)
    except TypeError as e:
        raise InvalidInputError(f"{name} must be an integer amount, got {type(x).__name__}") from e
    if v < 0:
        raise InvalidInputError(f"{name} must be non-negative, got {v}")
    return int(v)


def _as_policy(policy: Union[str, BestPolicy]) -> BestPolicy:
    if isinstance(policy, BestPolicy):
        return policy
    try:
        return BestPolicy(str(policy))
    except ValueError as e:
        allowed = ", ".join(p.value for p in BestPolicy)
        raise InvalidInputError(f"Unknown best-solution policy {policy!r} (expected one of: {allowed})") from e


def sort_values(values: Sequence[int]) -> Tuple[Utxo, ...]:
    r"""
    Sort amounts in **descending** order with a stable tie-break.

    The permutation is obtained with ``numpy.argsort(-v, kind="stable")`` so
    equal amounts keep their input order; index ``0`` of the result always
    holds the largest amount.

    Parameters
    ----------
    values : sequence of int
        Validated, non-negative amounts whose total fits in ``int64``.

    Returns
    -------
    tuple[Utxo, ...]
        Sorted values with their new and original positions.
    """
    arr = np.asarray(values, dtype=np.int64)
    order = np.argsort(-arr, kind="stable")
    return tuple(
        Utxo(index=i, value=int(arr[j]), original_index=int(j))
        for i, j in enumerate(order)
    )


class BranchAndBoundSearch:
    r"""
    Exact-sum branch-and-bound subset search with a full execution trace.

    The search walks the complete binary include/exclude tree over values
    sorted descending, :math:`v_0 \ge v_1 \ge \dots \ge v_{n-1}`, in
    depth-first order with the *include* child explored before the *exclude*
    child. For a node with running sum :math:`s` and next index :math:`j`,
    the checks are applied in this order:

    1. **Solution** if :math:`s = T` or :math:`T < s \le T + \tau`: a
       ``SOLUTION`` step is recorded and the branch is closed (adding values
       can only increase :math:`s`). The search continues in sibling and
       ancestor branches.
    2. **Backtrack** if :math:`j \ge n`.
    3. **Prune (unreachable)** if :math:`s + \sum_{k \ge j} v_k < T`
       (``PRUNE_SUM``).
    4. **Prune (overshoot)** if :math:`s > T + \tau` (``PRUNE_VAL``).
    5. Otherwise record ``INCLUDE`` and explore :math:`s + v_j`; once that
       subtree is exhausted record ``EXCLUDE`` and explore :math:`s`.

    A single ``COMPLETE`` step terminates every trace.

    The traversal runs on an explicit stack of frames rather than recursion,
    so deep value lists cannot exhaust the interpreter stack, and an optional
    ``max_steps`` cap can stop it between any two steps.

    Parameters
    ----------
    tolerance : int, optional
        Accepted overshoot :math:`\tau \ge 0` above the target (default ``0``).
    max_steps : int or None, optional
        Abort after this many search steps (``START`` and ``COMPLETE`` are
        not counted). ``None`` disables the cap.
    policy : {"last", "least_excess", "fewest_inputs"} or BestPolicy, optional
        Which candidate is reported as best. ``"last"`` (default) keeps the
        most recently discovered candidate.
    emit_start : bool, optional
        Record an explicit ``START`` marker before the traversal.

    Raises
    ------
    InvalidInputError
        On a negative or non-integer tolerance, a non-positive ``max_steps``,
        or an unknown policy.

    Examples
    --------
    >>> sc = BranchAndBoundSearch().run([60, 50, 25], 110)
    >>> sc.outcome.value, sc.best_path
    ('success', (True, True))
    """

    __slots__ = ("tolerance", "max_steps", "policy", "emit_start")

    def __init__(self,
                 tolerance: int = 0,
                 max_steps: Optional[int] = None,
                 policy: Union[str, BestPolicy] = BestPolicy.LAST_FOUND,
                 emit_start: bool = False):
        self.tolerance = _as_amount(tolerance, "tolerance")
        if max_steps is not None:
            max_steps = _as_amount(max_steps, "max_steps")
            if max_steps == 0:
                raise InvalidInputError("max_steps must be positive (or None to disable the cap)")
        self.max_steps = max_steps
        self.policy = _as_policy(policy)
        self.emit_start = bool(emit_start)

    def _validate(self, values: Sequence[int], target: int) -> Tuple[List[int], int]:
        if values is None:
            raise InvalidInputError("values must be a non-empty sequence of amounts")
        vals = [_as_amount(v, f"values[{i}]") for i, v in enumerate(values)]
        if not vals:
            raise InvalidInputError("values must be a non-empty sequence of amounts")
        tgt = _as_amount(target, "target")
        total = sum(vals) + tgt + self.tolerance
        if total > MAX_TOTAL:
            raise InvalidInputError(
                f"sum(values) + target + tolerance = {total} exceeds the maximum of {MAX_TOTAL}"
            )
        return vals, tgt

    def run(self, values: Sequence[int], target: int) -> Scenario:
        """
        Search ``values`` for subsets summing to ``target`` (within tolerance).

        Parameters
        ----------
        values : sequence of int
            Non-empty list of non-negative amounts, in any order.
        target : int
            Non-negative target amount.

        Returns
        -------
        Scenario
            Sorted values, the frozen trace, every candidate, and the best
            solution under the configured policy.

        Raises
        ------
        InvalidInputError
            If the inputs are rejected; no step is recorded in that case.
        """
        vals, target = self._validate(values, target)
        utxos = sort_values(vals)
        sorted_vals = [u.value for u in utxos]
        n = len(sorted_vals)
        tol = self.tolerance
        upper = target + tol

        rec = TraceRecorder(sorted_vals)
        best = _BestTracker(self.policy, target)

        if self.emit_start:
            rec.record(StepType.START, 0, 0, (), 0,
                       f"Searching {n} values for target {target} (tolerance {tol}).", ())
        offset = len(rec)

        stack: List[Tuple[int, _Frame]] = [(_VISIT, _Frame(0, (), 0, 0, ()))]
        exhausted = False

        while stack:
            if self.max_steps is not None and len(rec) - offset >= self.max_steps:
                exhausted = True
                logger.warning("Step cap of %d reached with %d frames unexplored; aborting search.",
                               self.max_steps, len(stack))
                break

            task, fr = stack.pop()
            s = fr.current_sum

            if task == _EXCLUDE:
                j = fr.next_index
                child = fr.path + (False,)
                rec.record(StepType.EXCLUDE, fr.depth, j, fr.selection, s,
                           f"Backtracking. Now checking value #{j} ({sorted_vals[j]}): EXCLUDED",
                           child)
                stack.append((_VISIT, _Frame(fr.depth + 1, fr.selection, s, j + 1, child)))
                continue

            if s == target or target < s <= upper:
                cand = rec.add_candidate(fr.path, s)
                if s == target:
                    why = f"Candidate solution found: sum {s} matches the target exactly."
                else:
                    why = f"Candidate solution found: sum {s} is within tolerance (+{s - target})."
                rec.record(StepType.SOLUTION, fr.depth, fr.next_index - 1, fr.selection, s,
                           why + " Recorded; the search continues in other branches.", fr.path)
                best.offer(cand)
                continue

            if fr.next_index >= n:
                rec.record(StepType.BACKTRACK, fr.depth, fr.next_index, fr.selection, s,
                           "End of branch reached. Backtracking.", fr.path)
                continue

            remaining = rec.suffix_sum(fr.next_index)
            if s + remaining < target:
                rec.record(StepType.PRUNE_SUM, fr.depth, fr.next_index, fr.selection, s,
                           f"Pruned: current ({s}) + remaining ({remaining}) < target ({target})",
                           fr.path)
                continue

            if s > upper:
                rec.record(StepType.PRUNE_VAL, fr.depth, fr.next_index, fr.selection, s,
                           f"Pruned: current ({s}) exceeds target + tolerance ({upper})",
                           fr.path)
                continue

            j = fr.next_index
            v = sorted_vals[j]
            sel = fr.selection + (j,)
            child = fr.path + (True,)
            rec.record(StepType.INCLUDE, fr.depth, j, sel, s + v,
                       f"Checking value #{j} ({v}): INCLUDED", child)
            # LIFO: the include subtree is fully explored before the exclude task pops
            stack.append((_EXCLUDE, fr))
            stack.append((_VISIT, _Frame(fr.depth + 1, sel, s + v, j + 1, child)))

        if rec.candidates:
            outcome = Outcome.SUCCESS
            done = ("Search stopped at the step cap. Best solution so far returned." if exhausted
                    else "Search complete. Best solution returned.")
        elif exhausted:
            outcome = Outcome.EXHAUSTED
            done = "Search stopped at the step cap. No solution found."
        else:
            outcome = Outcome.FAILURE
            done = "Search complete. No solution found."
        rec.record(StepType.COMPLETE, 0, 0, (), 0, done, ())
        steps, candidates = rec.freeze()

        logger.info("BnB search over %d values, target=%d, tolerance=%d: %s after %d steps (%d candidates)",
                    n, target, tol, outcome.value, len(steps), len(candidates))

        return Scenario(
            utxos=utxos,
            target=target,
            tolerance=tol,
            steps=steps,
            outcome=outcome,
            best_selection=best.selection,
            best_path=best.path,
            candidates=candidates,
            policy=self.policy,
            exhausted=exhausted,
        )


def search(values: Sequence[int],
           target: int,
           tolerance: int = 0,
           *,
           max_steps: Optional[int] = None,
           policy: Union[str, BestPolicy] = BestPolicy.LAST_FOUND,
           emit_start: bool = False) -> Scenario:
    """
    Run a traced branch-and-bound search.

    Shorthand for ``BranchAndBoundSearch(tolerance, max_steps, policy,
    emit_start).run(values, target)``; see :class:`BranchAndBoundSearch`.
    """
    engine = BranchAndBoundSearch(tolerance=tolerance, max_steps=max_steps,
                                  policy=policy, emit_start=emit_start)
    return engine.run(values, target)

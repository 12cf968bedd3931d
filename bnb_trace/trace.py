from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple

import numpy as np

from bnb_trace.paths import Path, selection_from_path

logger = logging.getLogger(__name__)


class StepType(Enum):
    """Kind of a recorded search event (closed set)."""
    START = "START"
    INCLUDE = "INCLUDE"
    EXCLUDE = "EXCLUDE"
    PRUNE_VAL = "PRUNE_VAL"    # current sum exceeds target + tolerance
    PRUNE_SUM = "PRUNE_SUM"    # current sum + remaining values < target
    SOLUTION = "SOLUTION"
    BACKTRACK = "BACKTRACK"
    COMPLETE = "COMPLETE"

    @property
    def is_prune(self) -> bool:
        return self in (StepType.PRUNE_VAL, StepType.PRUNE_SUM)


@dataclass(frozen=True, slots=True)
class Step:
    r"""
    One immutable event of the branch-and-bound search.

    Attributes
    ----------
    step_id : int
        Global sequence id, ``0, 1, 2, ...`` in recording order.
    kind : StepType
        What happened at this step.
    depth : int
        Depth of the node that was being expanded (the root is ``0``).
    value_index : int
        Index (into the descending-sorted values) of the value under
        consideration. ``SOLUTION`` steps carry the index of the last value
        decided on the path, which is ``-1`` for a solution at the root;
        ``BACKTRACK`` carries ``n``.
    selection : tuple[int, ...]
        Sorted-value indices included so far.
    current_sum : int
        :math:`\sum_{k \in \text{selection}} v_k`.
    remaining_value : int
        :math:`\sum_{k > \text{value\_index}} v_k`, the total of the values
        not yet considered.
    description : str
        Human-readable rationale.
    path : tuple[bool, ...]
        Node at which the event occurred (``True`` = include).
    """
    step_id: int
    kind: StepType
    depth: int
    value_index: int
    selection: Tuple[int, ...]
    current_sum: int
    remaining_value: int
    description: str
    path: Path


@dataclass(frozen=True, slots=True)
class SolutionCandidate:
    """
    A subset matching the target within tolerance.

    ``step_index`` is the id of the ``SOLUTION`` step that reports it, so a
    replay at cursor ``i`` sees the candidate iff ``step_index <= i``.
    """
    path: Path
    step_index: int
    value: int

    @property
    def selection(self) -> Tuple[int, ...]:
        return selection_from_path(self.path)


class TraceRecorder:
    r"""
    Append-only step log scoped to a single search invocation.

    The recorder owns the step-id counter and the candidate list, so two
    searches never share mutable state. ``remaining_value`` is derived from a
    suffix-sum table computed once with :func:`numpy.cumsum`:

    .. math::

        R_j = \sum_{k=j}^{n-1} v_k, \qquad R_n = 0,

    and a step at value index :math:`i` stores :math:`R_{i+1}` (clamped to
    the table bounds).

    Parameters
    ----------
    values : sequence of int
        Values already sorted in descending order.
    """

    __slots__ = ("_steps", "_candidates", "_suffix", "_n")

    def __init__(self, values: Sequence[int]) -> None:
        arr = np.asarray(values, dtype=np.int64)
        self._n = int(arr.size)
        self._suffix = np.zeros(self._n + 1, dtype=np.int64)
        if self._n:
            self._suffix[:-1] = np.cumsum(arr[::-1])[::-1]
        self._steps: List[Step] = []
        self._candidates: List[SolutionCandidate] = []

    @property
    def next_id(self) -> int:
        """Id the next recorded step will receive."""
        return len(self._steps)

    @property
    def candidates(self) -> Tuple[SolutionCandidate, ...]:
        return tuple(self._candidates)

    def __len__(self) -> int:
        return len(self._steps)

    def suffix_sum(self, start: int) -> int:
        """Total of ``values[start:]``; ``0`` past the end."""
        j = min(max(int(start), 0), self._n)
        return int(self._suffix[j])

    def record(self,
               kind: StepType,
               depth: int,
               value_index: int,
               selection: Sequence[int],
               current_sum: int,
               description: str,
               path: Sequence[bool]) -> Step:
        step = Step(
            step_id=self.next_id,
            kind=kind,
            depth=int(depth),
            value_index=int(value_index),
            selection=tuple(selection),
            current_sum=int(current_sum),
            remaining_value=self.suffix_sum(value_index + 1),
            description=description,
            path=tuple(path),
        )
        self._steps.append(step)
        return step

    def add_candidate(self, path: Sequence[bool], value: int) -> SolutionCandidate:
        """
        Register a candidate found at ``path``.

        Must be called *before* the matching ``SOLUTION`` step is recorded,
        so the candidate's ``step_index`` is that step's id.
        """
        cand = SolutionCandidate(path=tuple(path), step_index=self.next_id, value=int(value))
        self._candidates.append(cand)
        logger.debug("Candidate #%d at step %d: sum=%d path=%s",
                     len(self._candidates), cand.step_index, cand.value, cand.path)
        return cand

    def freeze(self) -> Tuple[Tuple[Step, ...], Tuple[SolutionCandidate, ...]]:
        """Return the immutable trace and candidate list."""
        return tuple(self._steps), tuple(self._candidates)

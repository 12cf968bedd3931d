from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from bnb_trace.paths import Path
from bnb_trace.trace import SolutionCandidate, Step


class Outcome(Enum):
    """Final result of a search."""
    SUCCESS = "success"
    FAILURE = "failure"
    EXHAUSTED = "exhausted"   # step cap hit before any candidate was found


class BestPolicy(Enum):
    """
    Rule deciding which candidate becomes the best solution.

    ``LAST_FOUND`` overwrites the best with every new candidate (most recent
    in traversal order). The two ranking policies keep the earliest candidate
    among those minimizing their key.
    """
    LAST_FOUND = "last"
    LEAST_EXCESS = "least_excess"    # min(sum - target)
    FEWEST_INPUTS = "fewest_inputs"  # min(len(selection))


@dataclass(frozen=True, slots=True)
class Utxo:
    """
    A candidate value after the descending sort.

    ``index`` is the position in the sorted list (``0`` is the largest);
    ``original_index`` the position in the caller's input.
    """
    index: int
    value: int
    original_index: int

    @property
    def id(self) -> str:
        return f"utxo-{self.index}"


@dataclass(frozen=True)
class Scenario:
    r"""
    Aggregate result of one traced search.

    Attributes
    ----------
    utxos : tuple[Utxo, ...]
        Values sorted descending, ties in input order.
    target, tolerance : int
        A subset sum :math:`s` is accepted iff :math:`s = T` or
        :math:`T < s \le T + \text{tolerance}`.
    steps : tuple[Step, ...]
        Frozen trace. Always ends with exactly one ``COMPLETE`` step.
    outcome : Outcome
        ``SUCCESS`` iff at least one candidate was found.
    best_selection, best_path : tuple or None
        Selection and path of the best candidate under ``policy``
        (``None`` when no candidate exists).
    candidates : tuple[SolutionCandidate, ...]
        Every candidate in discovery order.
    policy : BestPolicy
        Policy used to pick the best candidate.
    exhausted : bool
        ``True`` if the search stopped at its step cap.
    """
    utxos: Tuple[Utxo, ...]
    target: int
    tolerance: int
    steps: Tuple[Step, ...]
    outcome: Outcome
    best_selection: Optional[Tuple[int, ...]] = None
    best_path: Optional[Path] = None
    candidates: Tuple[SolutionCandidate, ...] = field(default_factory=tuple)
    policy: BestPolicy = BestPolicy.LAST_FOUND
    exhausted: bool = False

    @property
    def values(self) -> Tuple[int, ...]:
        return tuple(u.value for u in self.utxos)

    @property
    def n_steps(self) -> int:
        return len(self.steps)

    @property
    def success(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def best_value(self) -> Optional[int]:
        """Sum of the best selection, or ``None``."""
        if self.best_selection is None:
            return None
        return sum(self.utxos[i].value for i in self.best_selection)

    @property
    def best_original_indices(self) -> Optional[Tuple[int, ...]]:
        """Best selection expressed as positions in the caller's input list."""
        if self.best_selection is None:
            return None
        return tuple(sorted(self.utxos[i].original_index for i in self.best_selection))

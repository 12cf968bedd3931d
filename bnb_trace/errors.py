from __future__ import annotations

from typing import Optional


class BnBTraceError(Exception):
    """Base class for every error raised by :mod:`bnb_trace`."""


class InvalidInputError(BnBTraceError, ValueError):
    r"""
    Search inputs rejected at the boundary, before any step is recorded.

    Raised for an empty value list, non-integer or negative amounts, a
    negative target or tolerance, an unknown best-solution policy, a
    non-positive step cap, or when

    .. math::

        \sum_i v_i + \text{target} + \text{tolerance} > \texttt{MAX\_TOTAL}.
    """


class CursorOutOfRangeError(BnBTraceError, IndexError):
    """Replay cursor outside ``[0, n_steps - 1]``."""

    def __init__(self, cursor: int, n_steps: int) -> None:
        self.cursor = int(cursor)
        self.n_steps = int(n_steps)
        super().__init__(
            f"cursor {self.cursor} out of range for a trace of {self.n_steps} steps "
            f"(valid: 0..{self.n_steps - 1})"
        )


class MalformedTraceError(BnBTraceError, RuntimeError):
    """A trace that could not have been produced by a depth-first search."""

    def __init__(self, message: str, step_id: Optional[int] = None) -> None:
        self.step_id = step_id
        where = f" at step {step_id}" if step_id is not None else ""
        super().__init__(f"malformed trace{where}: {message}")

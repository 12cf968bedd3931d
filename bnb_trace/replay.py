from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import networkx as nx

from bnb_trace.errors import CursorOutOfRangeError, MalformedTraceError
from bnb_trace.paths import ROOT, Path, is_prefix, path_key
from bnb_trace.scenario import Scenario
from bnb_trace.trace import SolutionCandidate, Step, StepType

logger = logging.getLogger(__name__)


class NodeStatus(Enum):
    """Display-independent state of a tree node at a replay cursor."""
    PENDING = "pending"
    VISITED = "visited"
    ACTIVE = "active"
    PRUNED = "pruned"
    SOLUTION = "solution"


class Lineage(Enum):
    """Whether a node lies on the path to the best or a visible candidate solution."""
    BEST = "best"
    CANDIDATE = "candidate"
    NONE = "none"


_TERMINAL = (NodeStatus.PRUNED, NodeStatus.SOLUTION)


@dataclass(frozen=True, slots=True)
class TreeNode:
    """
    Node of the decision tree as seen at one cursor.

    ``kind`` is the kind of the last step whose path ended at this node
    (``None`` for the root before any step touched it).
    """
    key: str
    path: Path
    status: NodeStatus
    kind: Optional[StepType] = None

    @property
    def depth(self) -> int:
        return len(self.path)


@dataclass(frozen=True, slots=True)
class TreeEdge:
    """Parent→child edge; ``direction`` is ``True`` for the include (left) branch."""
    parent_key: str
    child_key: str
    direction: bool
    value: int


def classify_path(path: Sequence[bool],
                  cursor: int,
                  best_path: Optional[Sequence[bool]] = None,
                  candidates: Sequence[SolutionCandidate] = ()) -> Lineage:
    r"""
    Classify a node by the solutions it leads to.

    Let :math:`P` be the node's path. The node is

    - ``BEST`` if a best path :math:`B` exists and :math:`P \preceq B`;
    - ``CANDIDATE`` if some candidate with ``step_index <= cursor`` has a path
      :math:`C` with :math:`P \preceq C`;
    - ``NONE`` otherwise,

    where :math:`P \preceq Q` means :math:`P` is a prefix of :math:`Q`
    (see :func:`bnb_trace.paths.is_prefix`).

    Parameters
    ----------
    path : sequence of bool
        Node to classify.
    cursor : int
        Replay position; candidates recorded after it are not yet visible.
    best_path : sequence of bool or None, optional
        Path of the best solution, if any.
    candidates : sequence of SolutionCandidate, optional
        Candidates in discovery order.

    Returns
    -------
    Lineage
    """
    if best_path is not None and is_prefix(path, best_path):
        return Lineage.BEST
    for cand in candidates:
        if cand.step_index <= cursor and is_prefix(path, cand.path):
            return Lineage.CANDIDATE
    return Lineage.NONE


def validate_trace(steps: Sequence[Step], n_values: Optional[int] = None) -> None:
    r"""
    Check that ``steps`` has the shape of a depth-first search trace.

    A depth-first walk moves down at most one level per step, so for
    consecutive steps :math:`a, b`:

    .. math::

        |b.\text{path}| \le |a.\text{path}| + 1, \qquad
        |b.\text{path}| = |a.\text{path}| + 1 \;\Rightarrow\;
        a.\text{path} \preceq b.\text{path}.

    Step ids must be ``0..len(steps)-1`` and the trace must end with its only
    ``COMPLETE`` step.

    Parameters
    ----------
    steps : sequence of Step
        Trace to check.
    n_values : int or None, optional
        If given, no path may be longer than this.

    Raises
    ------
    MalformedTraceError
        On the first violation found.
    """
    if not steps:
        raise MalformedTraceError("trace is empty")
    prev: Optional[Step] = None
    completes = 0
    for i, st in enumerate(steps):
        if st.step_id != i:
            raise MalformedTraceError(f"expected step id {i}, found {st.step_id}", step_id=i)
        if n_values is not None and len(st.path) > n_values:
            raise MalformedTraceError(
                f"path of length {len(st.path)} exceeds the {n_values} available values", step_id=i)
        if st.kind is StepType.COMPLETE:
            completes += 1
        prev_len = len(prev.path) if prev is not None else 0
        grow = len(st.path) - prev_len
        if grow > 1:
            raise MalformedTraceError(f"path jumps {grow} levels deeper in one step", step_id=i)
        if grow == 1 and prev is not None and not is_prefix(prev.path, st.path):
            raise MalformedTraceError("path does not extend the previous step's path", step_id=i)
        prev = st
    if steps[-1].kind is not StepType.COMPLETE or completes != 1:
        raise MalformedTraceError(f"trace must end with exactly one COMPLETE step (found {completes})")


@dataclass(frozen=True)
class ReplayFrame:
    """
    Projection of the trace up to (and including) ``cursor``.

    Attributes
    ----------
    cursor : int
        Index of the current step.
    step : Step
        The step at ``cursor``.
    nodes : mapping[str, TreeNode]
        Materialized nodes keyed by :func:`bnb_trace.paths.path_key`.
    edges : tuple[TreeEdge, ...]
        Edges in creation order.
    best_path : tuple[bool, ...] or None
        Best-solution path used for lineage at this cursor.
    candidates : tuple[SolutionCandidate, ...]
        Candidates visible at this cursor.
    """
    cursor: int
    step: Step
    nodes: Mapping[str, TreeNode]
    edges: Tuple[TreeEdge, ...]
    best_path: Optional[Path] = None
    candidates: Tuple[SolutionCandidate, ...] = ()

    def node(self, path: Sequence[bool]) -> Optional[TreeNode]:
        return self.nodes.get(path_key(path))

    @property
    def active_node(self) -> TreeNode:
        """Node touched by the cursor step."""
        return self.nodes[path_key(self.step.path)]

    def by_status(self, status: NodeStatus) -> List[TreeNode]:
        return [n for n in self.nodes.values() if n.status is status]

    def lineage(self, path: Sequence[bool]) -> Lineage:
        return classify_path(path, self.cursor, self.best_path, self.candidates)


class _Arena:
    """Node arena keyed by path string; holds the settled (non-cursor) state."""

    __slots__ = ("values", "nodes", "edges")

    def __init__(self, values: Sequence[int]) -> None:
        self.values = tuple(values)
        self.nodes: Dict[str, TreeNode] = {"": TreeNode(key="", path=ROOT, status=NodeStatus.PENDING)}
        self.edges: List[TreeEdge] = []

    def materialize(self, path: Path) -> str:
        """Create every missing node and edge along ``path``; return the leaf key."""
        parent = ""
        for depth, direction in enumerate(path):
            key = parent + ("1" if direction else "0")
            if key not in self.nodes:
                self.nodes[key] = TreeNode(key=key, path=path[:depth + 1], status=NodeStatus.VISITED)
                value = self.values[depth] if depth < len(self.values) else 0
                self.edges.append(TreeEdge(parent, key, bool(direction), value))
            parent = key
        return parent

    def settle(self, key: str, step: Step) -> None:
        node = self.nodes[key]
        if step.kind.is_prune:
            status = NodeStatus.PRUNED
        elif step.kind is StepType.SOLUTION:
            status = NodeStatus.SOLUTION
        elif node.status in _TERMINAL:
            status = node.status
        else:
            status = NodeStatus.VISITED
        self.nodes[key] = replace(node, status=status, kind=step.kind)

    def snapshot(self, key: str, step: Step) -> Tuple[Dict[str, TreeNode], Tuple[TreeEdge, ...]]:
        if step.kind.is_prune:
            status = NodeStatus.PRUNED
        elif step.kind is StepType.SOLUTION:
            status = NodeStatus.SOLUTION
        else:
            status = NodeStatus.ACTIVE
        nodes = dict(self.nodes)
        nodes[key] = replace(nodes[key], status=status, kind=step.kind)
        return nodes, tuple(self.edges)


class TraceReplayer:
    r"""
    Reconstruct the search tree implied by any prefix of a scenario's trace.

    For a cursor :math:`i`, every step :math:`0..i` materializes the nodes on
    its path (first creation marks a node ``visited`` and adds the edge from
    its parent). The node a step lands on then becomes

    - ``pruned`` for ``PRUNE_SUM`` / ``PRUNE_VAL`` and ``solution`` for
      ``SOLUTION`` (these persist for later cursors),
    - ``visited`` otherwise,

    except that the node of the step *at* the cursor is shown as ``active``
    unless that step is itself a prune or a solution. The root is ``pending``
    until a step lands on it.

    The replayer never mutates the scenario and keeps no per-cursor state, so
    frames for different cursors can be requested in any order.

    Parameters
    ----------
    scenario : Scenario
        Result of :func:`bnb_trace.search.search`.
    clamp : bool, optional
        Clamp out-of-range cursors to ``[0, n_steps - 1]`` instead of raising
        :class:`CursorOutOfRangeError` (default ``False``).
    best_on_final_only : bool, optional
        Only treat the best path as ``best`` lineage on the last step, the
        way a step-by-step viewer reveals the answer at the end.
    validate : bool, optional
        Run :func:`validate_trace` on construction (default ``True``).

    Raises
    ------
    MalformedTraceError
        If ``validate`` is set and the trace is not DFS-shaped.
    """

    __slots__ = ("scenario", "clamp", "best_on_final_only")

    def __init__(self,
                 scenario: Scenario,
                 *,
                 clamp: bool = False,
                 best_on_final_only: bool = False,
                 validate: bool = True):
        if validate:
            validate_trace(scenario.steps, n_values=len(scenario.utxos))
        self.scenario = scenario
        self.clamp = bool(clamp)
        self.best_on_final_only = bool(best_on_final_only)

    @property
    def n_steps(self) -> int:
        return len(self.scenario.steps)

    def resolve_cursor(self, cursor: int) -> int:
        """Return ``cursor`` as a valid step index, clamping or raising."""
        c = int(cursor)
        last = self.n_steps - 1
        if 0 <= c <= last:
            return c
        if self.clamp:
            return min(max(c, 0), last)
        raise CursorOutOfRangeError(c, self.n_steps)

    def best_path_at(self, cursor: int) -> Optional[Path]:
        if self.best_on_final_only and cursor != self.n_steps - 1:
            return None
        return self.scenario.best_path

    def visible_candidates(self, cursor: int) -> Tuple[SolutionCandidate, ...]:
        return tuple(c for c in self.scenario.candidates if c.step_index <= cursor)

    def lineage(self, path: Sequence[bool], cursor: int) -> Lineage:
        """Lineage of ``path`` at ``cursor``; see :func:`classify_path`."""
        c = self.resolve_cursor(cursor)
        return classify_path(path, c, self.best_path_at(c), self.scenario.candidates)

    def iter_frames(self, start: int = 0, stop: Optional[int] = None) -> Iterator[ReplayFrame]:
        """
        Yield frames for cursors ``start, start + 1, ..., stop - 1``.

        The tree is built incrementally, so walking the whole trace costs one
        pass plus one node-map copy per yielded frame.
        """
        first = self.resolve_cursor(start)
        end = self.n_steps if stop is None else min(int(stop), self.n_steps)
        arena = _Arena(self.scenario.values)
        for i, step in enumerate(self.scenario.steps[:end]):
            key = arena.materialize(step.path)
            if i >= first:
                nodes, edges = arena.snapshot(key, step)
                yield ReplayFrame(
                    cursor=i,
                    step=step,
                    nodes=nodes,
                    edges=edges,
                    best_path=self.best_path_at(i),
                    candidates=self.visible_candidates(i),
                )
            arena.settle(key, step)

    def frame(self, cursor: int) -> ReplayFrame:
        """Nodes, edges, and statuses implied by steps ``0..cursor``."""
        c = self.resolve_cursor(cursor)
        return next(self.iter_frames(c, c + 1))

    def to_networkx(self, cursor: int) -> nx.DiGraph:
        r"""
        Export the frame at ``cursor`` as a :class:`networkx.DiGraph`.

        Nodes are path keys with attributes ``path``, ``depth``, ``status``,
        ``kind`` and ``lineage`` (string values); edges carry ``direction``
        (``True`` = include), ``value`` and the child's ``lineage``.
        """
        fr = self.frame(cursor)
        G = nx.DiGraph(cursor=fr.cursor, step_kind=fr.step.kind.value)
        for key, node in fr.nodes.items():
            G.add_node(
                key,
                path=node.path,
                depth=node.depth,
                status=node.status.value,
                kind=node.kind.value if node.kind is not None else None,
                lineage=fr.lineage(node.path).value,
            )
        for e in fr.edges:
            G.add_edge(e.parent_key, e.child_key, direction=e.direction, value=e.value,
                       lineage=fr.lineage(fr.nodes[e.child_key].path).value)
        return G


def replay(scenario: Scenario,
           cursor: int,
           *,
           clamp: bool = False,
           best_on_final_only: bool = False,
           validate: bool = True) -> ReplayFrame:
    """
    Project ``scenario``'s trace up to ``cursor``.

    Convenience wrapper around :meth:`TraceReplayer.frame`. Each call builds
    a new replayer and, unless ``validate=False``, re-checks the whole trace;
    stepping through many cursors should reuse one :class:`TraceReplayer`
    (:meth:`~TraceReplayer.frame` or :meth:`~TraceReplayer.iter_frames`).
    """
    replayer = TraceReplayer(scenario, clamp=clamp, best_on_final_only=best_on_final_only,
                             validate=validate)
    return replayer.frame(cursor)

from __future__ import annotations

from typing import Any, Dict

import pandas as pd

from bnb_trace.paths import path_key
from bnb_trace.scenario import Scenario
from bnb_trace.trace import StepType


def step_counts(scenario: Scenario) -> pd.Series:
    """
    Number of steps of each kind.

    Returns
    -------
    pandas.Series
        Indexed by every :class:`StepType` value (in declaration order),
        zero for kinds that never occur.
    """
    counts = pd.Series([st.kind.value for st in scenario.steps], dtype="object").value_counts()
    return counts.reindex([k.value for k in StepType], fill_value=0).astype("int64")


def search_statistics(scenario: Scenario) -> Dict[str, Any]:
    r"""
    Aggregate statistics of one traced search.

    Returns
    -------
    dict
        Keys: ``outcome``, ``n_values``, ``target``, ``tolerance``,
        ``total_steps``, ``tree_nodes`` (distinct paths touched, root
        included), ``max_depth``, ``candidates``, ``best_value``,
        ``exhausted``, ``prune_ratio``, and ``steps_<KIND>`` for every kind.

    Notes
    -----
    The prune ratio relates cut subtrees to expanded decisions:

    .. math::

        \text{prune\_ratio} = \frac{\#\text{PRUNE\_SUM} + \#\text{PRUNE\_VAL}}
                                   {\#\text{INCLUDE} + \#\text{EXCLUDE}}

    and is ``0.0`` when no decision was expanded.
    """
    counts = step_counts(scenario)
    keys = {""}
    for st in scenario.steps:
        p = st.path
        keys.update(path_key(p[:d]) for d in range(1, len(p) + 1))
    decisions = int(counts[StepType.INCLUDE.value] + counts[StepType.EXCLUDE.value])
    prunes = int(counts[StepType.PRUNE_SUM.value] + counts[StepType.PRUNE_VAL.value])

    stats: Dict[str, Any] = {
        "outcome": scenario.outcome.value,
        "n_values": len(scenario.utxos),
        "target": scenario.target,
        "tolerance": scenario.tolerance,
        "total_steps": scenario.n_steps,
        "tree_nodes": len(keys),
        "max_depth": max((len(st.path) for st in scenario.steps), default=0),
        "candidates": len(scenario.candidates),
        "best_value": scenario.best_value,
        "exhausted": scenario.exhausted,
        "prune_ratio": (prunes / decisions) if decisions else 0.0,
    }
    for kind, n in counts.items():
        stats[f"steps_{kind}"] = int(n)
    return stats

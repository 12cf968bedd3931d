from __future__ import annotations

import logging
from pathlib import Path as FsPath
from typing import Any, Dict, Mapping, Union

import orjson
import pandas as pd

from bnb_trace.paths import path_key
from bnb_trace.scenario import BestPolicy, Outcome, Scenario, Utxo
from bnb_trace.trace import SolutionCandidate, Step, StepType

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

STEP_COLUMNS = (
    "step_id", "kind", "depth", "value_index", "current_sum",
    "remaining_value", "n_selected", "path_key", "description",
)


def _step_to_dict(st: Step) -> Dict[str, Any]:
    return {
        "step_id": st.step_id,
        "kind": st.kind.value,
        "depth": st.depth,
        "value_index": st.value_index,
        "selection": list(st.selection),
        "current_sum": st.current_sum,
        "remaining_value": st.remaining_value,
        "description": st.description,
        "path": list(st.path),
    }


def _step_from_dict(d: Mapping[str, Any]) -> Step:
    return Step(
        step_id=int(d["step_id"]),
        kind=StepType(d["kind"]),
        depth=int(d["depth"]),
        value_index=int(d["value_index"]),
        selection=tuple(int(i) for i in d["selection"]),
        current_sum=int(d["current_sum"]),
        remaining_value=int(d["remaining_value"]),
        description=str(d["description"]),
        path=tuple(bool(b) for b in d["path"]),
    )


def _opt_tuple(x: Any, cast) -> Any:
    return None if x is None else tuple(cast(v) for v in x)


def scenario_to_dict(scenario: Scenario) -> Dict[str, Any]:
    r"""
    Convert a :class:`Scenario` into plain JSON-compatible containers.

    Enums become their string values and tuples become lists; every amount
    stays an exact integer.

    Parameters
    ----------
    scenario : Scenario
        Search result to serialize.

    Returns
    -------
    dict
        Keys: ``format``, ``utxos``, ``target``, ``tolerance``, ``outcome``,
        ``policy``, ``exhausted``, ``best_selection``, ``best_path``,
        ``candidates``, ``steps``.
    """
    return {
        "format": FORMAT_VERSION,
        "utxos": [
            {"index": u.index, "value": u.value, "original_index": u.original_index}
            for u in scenario.utxos
        ],
        "target": scenario.target,
        "tolerance": scenario.tolerance,
        "outcome": scenario.outcome.value,
        "policy": scenario.policy.value,
        "exhausted": scenario.exhausted,
        "best_selection": None if scenario.best_selection is None else list(scenario.best_selection),
        "best_path": None if scenario.best_path is None else list(scenario.best_path),
        "candidates": [
            {"path": list(c.path), "step_index": c.step_index, "value": c.value}
            for c in scenario.candidates
        ],
        "steps": [_step_to_dict(st) for st in scenario.steps],
    }


def scenario_from_dict(d: Mapping[str, Any]) -> Scenario:
    """
    Rebuild a :class:`Scenario` from :func:`scenario_to_dict` output.

    Raises
    ------
    ValueError
        If a required key is missing, a value has the wrong type, or the
        format version is not supported.
    """
    if not isinstance(d, Mapping):
        raise ValueError(f"Scenario must be a JSON object, got {type(d).__name__}")
    version = d.get("format", FORMAT_VERSION)
    if version != FORMAT_VERSION:
        raise ValueError(f"Unsupported scenario format {version!r} (expected {FORMAT_VERSION})")
    try:
        return Scenario(
            utxos=tuple(
                Utxo(index=int(u["index"]), value=int(u["value"]), original_index=int(u["original_index"]))
                for u in d["utxos"]
            ),
            target=int(d["target"]),
            tolerance=int(d.get("tolerance", 0)),
            steps=tuple(_step_from_dict(s) for s in d["steps"]),
            outcome=Outcome(d["outcome"]),
            best_selection=_opt_tuple(d.get("best_selection"), int),
            best_path=_opt_tuple(d.get("best_path"), bool),
            candidates=tuple(
                SolutionCandidate(
                    path=tuple(bool(b) for b in c["path"]),
                    step_index=int(c["step_index"]),
                    value=int(c["value"]),
                )
                for c in d.get("candidates", ())
            ),
            policy=BestPolicy(d.get("policy", BestPolicy.LAST_FOUND.value)),
            exhausted=bool(d.get("exhausted", False)),
        )
    except KeyError as e:
        raise ValueError(f"Scenario is missing required key: {e.args[0]!r}") from e
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid scenario data: {e}") from e


def dumps_scenario(scenario: Scenario, *, indent: bool = False) -> bytes:
    """Serialize to JSON bytes with :mod:`orjson`."""
    option = orjson.OPT_INDENT_2 if indent else 0
    return orjson.dumps(scenario_to_dict(scenario), option=option)


def loads_scenario(data: Union[bytes, str]) -> Scenario:
    """Parse JSON produced by :func:`dumps_scenario`."""
    try:
        raw = orjson.loads(data)
    except orjson.JSONDecodeError as e:
        raise ValueError(f"Failed to parse scenario JSON: {e}") from e
    return scenario_from_dict(raw)


def save_scenario(scenario: Scenario, path: Union[str, FsPath], *, indent: bool = True) -> FsPath:
    out = FsPath(path)
    out.write_bytes(dumps_scenario(scenario, indent=indent))
    logger.info("Wrote scenario (%d steps) to %s", scenario.n_steps, out)
    return out


def load_scenario(path: Union[str, FsPath]) -> Scenario:
    src = FsPath(path)
    try:
        return loads_scenario(src.read_bytes())
    except (OSError, ValueError) as e:
        raise ValueError(f"Failed to load {src}: {e}") from e


def steps_to_dataframe(scenario: Scenario) -> pd.DataFrame:
    r"""
    Tabulate the trace, one row per step.

    Returns
    -------
    pandas.DataFrame
        Columns ``step_id, kind, depth, value_index, current_sum,
        remaining_value, n_selected, path_key, description`` with ``kind`` as
        the step-type string and ``path_key`` the ``"1"``/``"0"`` node key.
        Integer columns use ``int64``.

    Notes
    -----
    An empty trace yields an empty frame with the same columns.
    """
    rows = [
        (st.step_id, st.kind.value, st.depth, st.value_index, st.current_sum,
         st.remaining_value, len(st.selection), path_key(st.path), st.description)
        for st in scenario.steps
    ]
    df = pd.DataFrame.from_records(rows, columns=list(STEP_COLUMNS))
    int_cols = ["step_id", "depth", "value_index", "current_sum", "remaining_value", "n_selected"]
    return df.astype({c: "int64" for c in int_cols})


def candidates_to_dataframe(scenario: Scenario) -> pd.DataFrame:
    """One row per candidate: ``step_index, value, excess, n_inputs, path_key, is_best``."""
    best = scenario.best_path
    rows = [
        (c.step_index, c.value, c.value - scenario.target, len(c.selection),
         path_key(c.path), best is not None and c.path == best)
        for c in scenario.candidates
    ]
    return pd.DataFrame.from_records(
        rows, columns=["step_index", "value", "excess", "n_inputs", "path_key", "is_best"]
    )

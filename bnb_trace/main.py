#!/usr/bin/env python3
r"""
Branch-and-bound coin selection tracer (command line).

Runs the traced exact-sum search over a list of UTXO amounts, reports the
outcome and search statistics, and optionally writes the full scenario as
JSON and the step log as CSV. The ``replay`` subcommand projects a trace
prefix onto the decision tree and prints every materialized node with its
status and solution lineage.

CLI overview
------------
See :func:`build_parser` for all options. Typical usage:

.. code-block:: bash

   bnb-trace search --values 100000 60000 55000 50000 25000 10000 --target 110000
   bnb-trace search --target 110000 --tolerance 5000 --out scenario.json --csv steps.csv
   bnb-trace replay --scenario scenario.json --cursor 12

Configuration
-------------
``--config`` points to a JSON file with optional ``"search"`` and
``"replay"`` blocks; explicit command-line flags override file values, and
file values override :data:`DEFAULT_CONFIG`.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional, Sequence

import orjson
import pandas as pd

from bnb_trace.errors import BnBTraceError
from bnb_trace.export import load_scenario, save_scenario, steps_to_dataframe
from bnb_trace.metrics import search_statistics
from bnb_trace.paths import path_key
from bnb_trace.replay import TraceReplayer
from bnb_trace.scenario import BestPolicy, Scenario
from bnb_trace.search import BranchAndBoundSearch

DEFAULT_UTXOS = [100000, 60000, 55000, 50000, 25000, 10000]
DEFAULT_TARGET = 110000

DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "search": {
        "values": DEFAULT_UTXOS,
        "target": DEFAULT_TARGET,
        "tolerance": 0,
        "max_steps": None,
        "policy": BestPolicy.LAST_FOUND.value,
        "emit_start": False,
    },
    "replay": {
        "clamp": False,
        "best_on_final_only": False,
    },
}


def _add_search_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--values", type=int, nargs="+", default=None, metavar="AMOUNT",
                   help=f"UTXO amounts in satoshis (default: {' '.join(map(str, DEFAULT_UTXOS))}).")
    p.add_argument("-t", "--target", type=int, default=None,
                   help=f"Target amount in satoshis (default: {DEFAULT_TARGET}).")
    p.add_argument("--tolerance", type=int, default=None,
                   help="Accepted overshoot above the target (default: 0).")
    p.add_argument("--max-steps", type=int, default=None,
                   help="Abort the search after this many steps (default: no cap).")
    p.add_argument("--policy", type=str, default=None, choices=[bp.value for bp in BestPolicy],
                   help="Best-solution policy (default: last).")
    p.add_argument("--emit-start", action="store_true", default=None,
                   help="Record an explicit START step before the search.")


def build_parser() -> argparse.ArgumentParser:
    r"""
    Construct the command-line interface.

    Returns
    -------
    argparse.ArgumentParser
        Parser with two subcommands:

        - ``search``: run the traced search; ``--out`` writes the scenario
          JSON, ``--csv`` the per-step table.
        - ``replay``: load (``--scenario``) or run a scenario and print the
          tree at ``--cursor`` (default: the last step).
    """
    p = argparse.ArgumentParser(prog="bnb-trace",
                                description="Traced branch-and-bound coin selection.")
    p.add_argument("--config", type=str, default=None,
                   help="Path to JSON config with 'search' / 'replay' blocks.")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Enable verbose logging.")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("search", help="Run the search and report the outcome.")
    _add_search_options(s)
    s.add_argument("--out", type=str, default=None,
                   help="If set, write the scenario JSON to this path.")
    s.add_argument("--csv", type=str, default=None,
                   help="If set, write the step table as CSV to this path.")

    r = sub.add_parser("replay", help="Show the decision tree at a trace position.")
    _add_search_options(r)
    r.add_argument("--scenario", type=str, default=None,
                   help="Scenario JSON written by 'search --out' (otherwise the search is run).")
    r.add_argument("-c", "--cursor", type=int, default=None,
                   help="Step index to replay up to (default: last step).")
    r.add_argument("--clamp", action="store_true", default=None,
                   help="Clamp an out-of-range cursor instead of failing.")
    r.add_argument("--best-on-final-only", action="store_true", default=None,
                   help="Only highlight the best solution's lineage on the last step.")
    return p


def setup_logging(verbose: bool = False) -> None:
    r"""
    Configure process-wide logging.

    Parameters
    ----------
    verbose : bool, optional
        If ``True``, set level to ``DEBUG``; otherwise ``INFO``.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


def load_config(config_path: Path) -> MutableMapping[str, dict]:
    r"""
    Load a JSON configuration with :mod:`orjson`.

    Raises
    ------
    ValueError
        If the file cannot be read or parsed, is not a JSON object, or its
        ``"search"`` / ``"replay"`` block is not an object.
    """
    try:
        cfg = orjson.loads(config_path.read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise ValueError(f"Failed to parse {config_path}: {e}") from e
    if not isinstance(cfg, dict):
        raise ValueError(f"Config {config_path} must be a JSON object")
    for block in ("search", "replay"):
        if block in cfg and not isinstance(cfg[block], dict):
            raise ValueError(f"Config {config_path}: '{block}' must be a JSON object")
    return cfg


def _deep_update(d: dict, u: dict) -> dict:
    r"""
    Recursively merge dictionaries (without side effects).

    Nested dicts are merged; scalars and containers from ``u`` replace
    those in ``d``.
    """
    out = dict(d)
    for k, v in u.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_update(out[k], v)
        else:
            out[k] = v
    return out


def resolve_config(args: argparse.Namespace) -> Dict[str, Dict[str, Any]]:
    """Merge :data:`DEFAULT_CONFIG`, the ``--config`` file and explicit CLI flags."""
    cfg: Dict[str, Any] = dict(DEFAULT_CONFIG)
    if args.config:
        logging.info("Reading config from %s", args.config)
        cfg = _deep_update(cfg, load_config(Path(args.config)))

    overrides: Dict[str, Dict[str, Any]] = {"search": {}, "replay": {}}
    for key in ("values", "target", "tolerance", "max_steps", "policy", "emit_start"):
        val = getattr(args, key, None)
        if val is not None:
            overrides["search"][key] = val
    for key in ("clamp", "best_on_final_only"):
        val = getattr(args, key, None)
        if val is not None:
            overrides["replay"][key] = val
    return _deep_update(cfg, overrides)


def run_search(search_cfg: MutableMapping[str, Any]) -> Scenario:
    engine = BranchAndBoundSearch(
        tolerance=search_cfg.get("tolerance", 0),
        max_steps=search_cfg.get("max_steps"),
        policy=search_cfg.get("policy", BestPolicy.LAST_FOUND.value),
        emit_start=bool(search_cfg.get("emit_start", False)),
    )
    return engine.run(search_cfg["values"], search_cfg["target"])


def _log_summary(scenario: Scenario) -> None:
    stats = search_statistics(scenario)
    logging.info("Search statistics:")
    for k, v in stats.items():
        logging.info("  %s: %s", k, v)
    if scenario.best_selection is not None:
        picked = [scenario.utxos[i].value for i in scenario.best_selection]
        logging.info("Best selection (%s policy): %s = %d", scenario.policy.value, picked, sum(picked))
    else:
        logging.info("No selection matches target %d (tolerance %d).", scenario.target, scenario.tolerance)


def _cmd_search(args: argparse.Namespace, cfg: Dict[str, Dict[str, Any]]) -> int:
    scenario = run_search(cfg["search"])
    _log_summary(scenario)
    if args.out:
        save_scenario(scenario, args.out)
    if args.csv:
        steps_to_dataframe(scenario).to_csv(args.csv, index=False)
        logging.info("Wrote step table to %s", args.csv)
    return 0


def _cmd_replay(args: argparse.Namespace, cfg: Dict[str, Dict[str, Any]]) -> int:
    if args.scenario:
        logging.info("Loading scenario from %s", args.scenario)
        scenario = load_scenario(args.scenario)
    else:
        scenario = run_search(cfg["search"])

    replayer = TraceReplayer(scenario,
                             clamp=bool(cfg["replay"].get("clamp", False)),
                             best_on_final_only=bool(cfg["replay"].get("best_on_final_only", False)))
    cursor = replayer.n_steps - 1 if args.cursor is None else args.cursor
    fr = replayer.frame(cursor)
    logging.info("Step %d/%d [%s]: %s", fr.cursor + 1, replayer.n_steps,
                 fr.step.kind.value, fr.step.description)

    rows = [
        (path_key(n.path) or "(root)", n.depth, n.status.value,
         n.kind.value if n.kind is not None else "", fr.lineage(n.path).value)
        for n in sorted(fr.nodes.values(), key=lambda n: (n.depth, n.key))
    ]
    table = pd.DataFrame(rows, columns=["node", "depth", "status", "kind", "lineage"])
    print(table.to_string(index=False))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    r"""
    Entry point of the ``bnb-trace`` console script.

    Returns
    -------
    int
        ``0`` on success, ``2`` when inputs, configuration or the cursor are
        rejected (the reason is logged).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        cfg = resolve_config(args)
        if args.command == "search":
            return _cmd_search(args, cfg)
        return _cmd_replay(args, cfg)
    except (BnBTraceError, ValueError) as e:
        logging.error("%s", e)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())

__all__ = [
    "search", "BranchAndBoundSearch", "sort_values", "MAX_TOTAL",
    "Scenario", "Utxo", "Outcome", "BestPolicy",
    "Step", "StepType", "SolutionCandidate", "TraceRecorder",
    "replay", "TraceReplayer", "ReplayFrame", "TreeNode", "TreeEdge",
    "NodeStatus", "Lineage", "classify_path", "validate_trace",
    "path_key", "path_from_key", "is_prefix",
    "scenario_to_dict", "scenario_from_dict", "dumps_scenario", "loads_scenario",
    "save_scenario", "load_scenario", "steps_to_dataframe", "candidates_to_dataframe",
    "search_statistics", "step_counts",
    "BnBTraceError", "InvalidInputError", "CursorOutOfRangeError", "MalformedTraceError",
]

# Errors
from .errors import BnBTraceError, InvalidInputError, CursorOutOfRangeError, MalformedTraceError

# Paths & trace model
from .paths import path_key, path_from_key, is_prefix
from .trace import Step, StepType, SolutionCandidate, TraceRecorder
from .scenario import Scenario, Utxo, Outcome, BestPolicy

# Search engine
from .search import search, BranchAndBoundSearch, sort_values, MAX_TOTAL

# Replay
from .replay import (
    replay,
    TraceReplayer,
    ReplayFrame,
    TreeNode,
    TreeEdge,
    NodeStatus,
    Lineage,
    classify_path,
    validate_trace,
)

# Export & metrics
from .export import (
    scenario_to_dict,
    scenario_from_dict,
    dumps_scenario,
    loads_scenario,
    save_scenario,
    load_scenario,
    steps_to_dataframe,
    candidates_to_dataframe,
)
from .metrics import search_statistics, step_counts

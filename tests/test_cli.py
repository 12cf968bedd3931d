import sys
from pathlib import Path
sys.path.append(str(Path(__file__).resolve().parents[1]))

import orjson
import pandas as pd

from bnb_trace import Outcome, load_scenario
from bnb_trace.main import DEFAULT_CONFIG, _deep_update, build_parser, main


def test_search_writes_json_and_csv(tmp_path):
    out = tmp_path / "scenario.json"
    csv = tmp_path / "steps.csv"
    rc = main(["search", "--values", "60", "50", "25", "--target", "110",
               "--out", str(out), "--csv", str(csv)])
    assert rc == 0
    sc = load_scenario(out)
    assert sc.best_path == (True, True)
    df = pd.read_csv(csv)
    assert len(df) == sc.n_steps
    assert df["kind"].iloc[-1] == "COMPLETE"


def test_search_defaults_to_reference_scenario(tmp_path):
    out = tmp_path / "scenario.json"
    assert main(["search", "--out", str(out)]) == 0
    sc = load_scenario(out)
    assert sc.values == tuple(DEFAULT_CONFIG["search"]["values"])
    assert sc.target == 110000
    assert sc.best_path == (False, True, False, True)


def test_config_file_and_overrides(tmp_path):
    cfg = tmp_path / "config.json"
    cfg.write_bytes(orjson.dumps({"search": {"values": [10, 10], "target": 25}}))
    out = tmp_path / "a.json"
    assert main(["--config", str(cfg), "search", "--out", str(out)]) == 0
    assert load_scenario(out).outcome is Outcome.FAILURE

    out2 = tmp_path / "b.json"
    assert main(["--config", str(cfg), "search", "--target", "20", "--out", str(out2)]) == 0
    assert load_scenario(out2).outcome is Outcome.SUCCESS


def test_bad_config_is_reported(tmp_path):
    cfg = tmp_path / "config.json"
    cfg.write_text("{broken")
    assert main(["--config", str(cfg), "search"]) == 2
    assert main(["--config", str(tmp_path / "missing.json"), "search"]) == 2


def test_missing_scenario_file_is_reported(tmp_path):
    assert main(["replay", "--scenario", str(tmp_path / "nope.json")]) == 2


def test_config_blocks_must_be_objects(tmp_path):
    cfg = tmp_path / "config.json"
    cfg.write_bytes(orjson.dumps({"search": [1, 2]}))
    assert main(["--config", str(cfg), "search"]) == 2
    cfg.write_bytes(orjson.dumps({"replay": "yes"}))
    assert main(["--config", str(cfg), "replay"]) == 2


def test_invalid_input_exit_code():
    assert main(["search", "--values", "5", "-1", "--target", "4"]) == 2
    assert main(["search", "--values", "5", "--target", "5", "--max-steps", "0"]) == 2


def test_replay_prints_tree(tmp_path, capsys):
    out = tmp_path / "scenario.json"
    assert main(["search", "--values", "60", "50", "25", "--target", "110", "--out", str(out)]) == 0
    capsys.readouterr()
    assert main(["replay", "--scenario", str(out), "--cursor", "2"]) == 0
    text = capsys.readouterr().out
    assert "solution" in text
    assert "(root)" in text
    assert "best" in text


def test_replay_cursor_range(tmp_path):
    out = tmp_path / "scenario.json"
    main(["search", "--values", "60", "50", "25", "--target", "110", "--out", str(out)])
    assert main(["replay", "--scenario", str(out), "--cursor", "99"]) == 2
    assert main(["replay", "--scenario", str(out), "--cursor", "99", "--clamp"]) == 0


def test_replay_runs_search_without_scenario_file(capsys):
    assert main(["replay", "--values", "100", "--target", "100"]) == 0
    assert "active" in capsys.readouterr().out


def test_parser_and_deep_update():
    args = build_parser().parse_args(["replay", "--best-on-final-only"])
    assert args.command == "replay"
    assert args.best_on_final_only is True
    assert args.clamp is None
    merged = _deep_update({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}})
    assert merged == {"a": {"x": 1, "y": 3}, "b": 1}

"""
Tests for model files, the replication runner and the suite script.
"""

import shutil
from pathlib import Path

import pandas as pd
import pytest

from scripts.run_suite import run_suite
from src.apace import build_model, load_model, run_model, run_replications
from src.apace.schema import ModelConfig

from model_factory import make_config, sir_model

MODELS_DIR = Path(__file__).resolve().parent.parent / "models"


@pytest.mark.parametrize("filename", ["sir_baseline.yaml", "sir_interventions.yaml", "sir_calibration.yaml"])
def test_example_models_load_and_build(filename):
    cfg = load_model(str(MODELS_DIR / filename))
    trajectory = build_model(cfg)
    trajectory.reset(cfg.seed)
    assert trajectory.total_members() > 0


def test_missing_model_file():
    with pytest.raises(FileNotFoundError):
        load_model("models/does_not_exist.yaml")


def test_unknown_references_are_reported():
    model = sir_model()
    model["classes"][1]["processes"][0]["destination"] = "Recovered"
    with pytest.raises(ValueError, match="Unknown destination classes"):
        build_model(ModelConfig(**model))

    model = sir_model()
    model["classes"][1]["infectivity"] = ["beta"]
    with pytest.raises(ValueError, match="Unknown parameters"):
        build_model(ModelConfig(**model))


def test_duplicate_names_are_rejected():
    model = sir_model()
    model["classes"].append({"name": "R"})
    with pytest.raises(ValueError, match="Duplicate class names"):
        ModelConfig(**model)


def test_run_model_returns_trajectory_table():
    cfg = load_model(str(MODELS_DIR / "sir_baseline.yaml"))
    sim, outcome = run_model(cfg)

    for col in ("time", "S", "I", "R", "I:new", "R:accumulated", "interventions"):
        assert col in sim.columns, f"Simulation table must have column: {col}"
    assert outcome["accepted"]
    assert outcome["seed"] == cfg.seed


def test_interventions_model_runs():
    cfg = load_model(str(MODELS_DIR / "sir_interventions.yaml"))
    sim, outcome = run_model(cfg)

    assert outcome["accepted"]
    assert "vaccine_doses:available" in sim.columns
    assert (sim["vaccine_doses:available"] >= 0).all()
    assert sim["Death:accumulated"].is_monotonic_increasing


def test_replication_seeds_do_not_depend_on_workers():
    cfg = load_model(str(MODELS_DIR / "sir_baseline.yaml"))
    serial, metrics = run_replications(cfg, n=4, processes=1)
    parallel, _ = run_replications(cfg, n=4, processes=2)

    pd.testing.assert_frame_equal(serial, parallel)
    stride = cfg.settings.max_seed_attempts
    assert serial["seed"].tolist() == [cfg.seed + i * stride for i in range(4)]
    assert metrics["replications"] == 4
    assert metrics["acceptance_rate"] == 1.0


def test_optimization_replications_do_not_depend_on_workers():
    """The learning policy sees replications in order whatever the worker count."""
    model = sir_model(model_use="optimization", wtp=1000.0)
    model["interventions"] = [{
        "name": "isolation",
        "rule": {"rule": "dynamic"},
        "cost_per_unit_time": 10.0,
        "contact_change": [[[-0.5]]],
    }]
    model["features"] = [{"name": "time", "kind": "epidemic_time"}]
    model["policy"] = {"kind": "greedy_q", "epsilon": 0.3}
    cfg = make_config(model)

    serial, _ = run_replications(cfg, n=4, first_seed=0, processes=1)
    parallel, _ = run_replications(cfg, n=4, first_seed=0, processes=2)

    pd.testing.assert_frame_equal(serial, parallel)


def test_replication_out_of_seeds_does_not_abort_the_batch():
    model = sir_model(model_use="calibration", max_seed_attempts=3)
    model["summation_statistics"][0]["calibration"] = {"feasible_min": 1e9, "feasible_max": 2e9}
    cfg = make_config(model)

    df, metrics = run_replications(cfg, n=2, first_seed=0)

    assert len(df) == 2, "Every replication must be reported"
    assert not df["accepted"].any()
    assert df["discarded_trajectories"].tolist() == [3, 3]
    assert df["seed"].tolist() == [2, 5], "The last seed of each replication's own range is reported"
    assert metrics["acceptance_rate"] == 0.0


def test_run_suite_smoke(tmp_path):
    """Smoke test: run suite on one model and verify outputs."""
    models_dir = tmp_path / "models"
    models_dir.mkdir()
    shutil.copy(MODELS_DIR / "sir_baseline.yaml", models_dir)

    summary_df = run_suite(models_dir, tmp_path / "runs", replications=2)

    assert len(summary_df) == 1
    assert summary_df["model"].tolist() == ["sir_baseline"]
    for col in ("mean_total_cost", "mean_reward", "acceptance_rate"):
        assert col in summary_df.columns, f"Summary must have column: {col}"
        assert summary_df[col].notna().all()
    assert "error" not in summary_df.columns
    assert list((tmp_path / "runs").glob("suite_*/summary.csv"))

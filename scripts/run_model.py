#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
from pathlib import Path
from datetime import datetime

from src.apace.builder import build_model
from src.config import Config
from src.apace.schema import load_model
from src.apace.simulate import run_replications, run_trajectory
from src.schemas.report import RunReport
from src.utils.data_validation import validate_dataframe
from src.utils.logging_utils import attach_run_log


def main() -> int:
    parser = argparse.ArgumentParser(description="Run an epidemic model: one stored trajectory plus replications.")
    parser.add_argument("--model", required=True, help="Path to model YAML.")
    parser.add_argument("--out-dir", dest="out_dir", type=str, default=None,
                        help="Output directory (if not provided, uses runs/<model>/<timestamp>/)")
    parser.add_argument("--replications", type=int, default=None, help="Override outputs.replications.")
    parser.add_argument("--seed", type=int, default=None, help="Override the first seed.")
    parser.add_argument("--processes", type=int, default=Config.DEFAULT_PROCESSES, help="Worker processes for replications.")
    args = parser.parse_args()

    cfg = load_model(args.model)
    seed = cfg.seed if args.seed is None else args.seed

    # Determine output directory
    if args.out_dir:
        out_dir = Path(args.out_dir)
    else:
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        out_dir = Path(cfg.outputs.out_dir) / cfg.name / ts
    out_dir.mkdir(parents=True, exist_ok=True)
    attach_run_log(out_dir)

    # Stored trajectory for inspection
    trajectory = build_model(cfg)
    outcome = run_trajectory(trajectory, 0, seed).to_dict()
    artifacts = []
    if cfg.outputs.save_csv:
        sim = trajectory.outputs.simulation_table()
        if cfg.settings.store_trajectories:
            validate_dataframe(sim, required_columns=["time", "interventions"])
        tables = {
            "trajectory.csv": sim,
            "observations.csv": trajectory.outputs.observation_table(),
            "calibration.csv": trajectory.outputs.calibration_table(),
        }
        for filename, table in tables.items():
            if len(table):
                table.to_csv(out_dir / filename, index=False)
                artifacts.append(str(out_dir / filename))

    replications, metrics = run_replications(cfg, n=args.replications, first_seed=seed, processes=args.processes)
    replications.to_csv(out_dir / "replications.csv", index=False)
    artifacts.append(str(out_dir / "replications.csv"))

    report = RunReport(
        model_path=args.model,
        model_name=cfg.name,
        model_use=cfg.settings.model_use,
        first_seed=seed,
        replications=len(replications),
        metrics=metrics,
        outcome=outcome,
        artifacts=artifacts,
    )
    with open(out_dir / "metrics.json", "w", encoding="utf-8") as f:
        json.dump(report.model_dump(), f, indent=2, sort_keys=True)

    # Print summary
    print(f"Model: {cfg.name} ({cfg.settings.model_use})")
    print(f"Horizon: {cfg.settings.horizon} dt={cfg.settings.delta_t}")
    for k in ("mean_reward", "mean_total_cost", "mean_total_qaly", "acceptance_rate", "eradication_rate"):
        if k in metrics:
            print(f"{k}: {metrics[k]:.6f}")
    print(f"Outputs: {out_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

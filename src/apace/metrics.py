from __future__ import annotations

from typing import Dict

import pandas as pd


def compute_metrics(df: pd.DataFrame) -> Dict[str, float]:
    # Expect one row per replication with the TrajectoryResult fields
    n = len(df)
    metrics: Dict[str, float] = {"replications": float(n)}
    if n == 0:
        return metrics

    for col in ("total_cost", "total_qaly", "annual_cost", "reward"):
        metrics[f"mean_{col}"] = float(df[col].mean())
        metrics[f"std_{col}"] = float(df[col].std(ddof=1)) if n > 1 else 0.0

    metrics["acceptance_rate"] = float(df["accepted"].mean())
    metrics["eradication_rate"] = float(df["stopped_due_to_eradication"].mean())
    metrics["mean_discarded_trajectories"] = float(df["discarded_trajectories"].mean())
    metrics["mean_decision_periods"] = float(df["decision_periods"].mean())
    return metrics

from __future__ import annotations

from multiprocessing import Pool
from typing import Dict, List, Optional, Tuple

import pandas as pd

from src.utils.logging_utils import get_logger
from .builder import build_model
from .metrics import compute_metrics
from .schema import ModelConfig
from .trajectory import NoAcceptableTrajectory, Trajectory, TrajectoryResult

logger = get_logger(__name__)


def run_trajectory(trajectory: Trajectory, replication: int, seed: int) -> TrajectoryResult:
    """
    One replication; rejected seeds are replaced by the next ones.

    A replication that runs out of seeds is returned as not accepted, with
    every attempt counted as discarded.
    """
    try:
        attempt = trajectory.simulate_until_acceptable(seed, replication_index=replication)
    except NoAcceptableTrajectory as e:
        logger.warning(str(e))
        return trajectory.result(discarded=trajectory.settings.max_seed_attempts)
    return trajectory.result(discarded=attempt.discarded)


def run_model(cfg: ModelConfig, seed: Optional[int] = None) -> Tuple[pd.DataFrame, Dict[str, float]]:
    """
    Run a single trajectory and return its simulation table and outcome.

    Args:
        cfg: Model configuration
        seed: Seed of the first attempt (defaults to cfg.seed)

    Returns:
        (simulation table, outcome dict)
    """
    trajectory = build_model(cfg)
    result = run_trajectory(trajectory, 0, cfg.seed if seed is None else seed)
    return trajectory.outputs.simulation_table(), result.to_dict()


def _run_batch(args: Tuple[ModelConfig, List[Tuple[int, int]]]) -> List[TrajectoryResult]:
    cfg, jobs = args
    trajectory = build_model(cfg)
    return [run_trajectory(trajectory, replication, seed) for replication, seed in jobs]


def run_replications(
    cfg: ModelConfig,
    n: Optional[int] = None,
    first_seed: Optional[int] = None,
    processes: int = 1,
) -> Tuple[pd.DataFrame, Dict[str, float]]:
    """
    Run ``n`` replications; replication i starts from seed ``first_seed + i * stride``.

    Seeds of one replication never overlap with the next one's, so results do
    not depend on how replications are split across worker processes. Each
    worker builds its own entity graph; results are merged once every worker
    has finished. In optimization mode the policy learns across replications
    in order, so they always run in a single process.

    Returns:
        (one row per replication, summary metrics)
    """
    n = n or cfg.outputs.replications
    first_seed = cfg.seed if first_seed is None else first_seed
    stride = cfg.settings.max_seed_attempts
    jobs = [(i, first_seed + i * stride) for i in range(n)]

    if cfg.settings.model_use == "optimization" and processes > 1:
        logger.warning(f"{cfg.name}: optimization replications share one policy; running in a single process")
        processes = 1

    if processes > 1 and n > 1:
        chunks = [jobs[k::processes] for k in range(processes) if jobs[k::processes]]
        with Pool(processes=len(chunks)) as pool:
            batches = pool.map(_run_batch, [(cfg, chunk) for chunk in chunks])
        results = [r for batch in batches for r in batch]
    else:
        results = _run_batch((cfg, jobs))

    results.sort(key=lambda r: r.replication)
    df = pd.DataFrame([r.to_dict() for r in results])
    metrics = compute_metrics(df)
    logger.info(f"{cfg.name}: {n} replications, mean reward {metrics['mean_reward']:.4f}")
    return df, metrics

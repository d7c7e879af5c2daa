"""Stochastic compartmental epidemic trajectory engine."""
from .schema import ModelConfig, load_model
from .builder import build_model
from .trajectory import NoAcceptableTrajectory, Trajectory, TrajectoryResult
from .simulate import run_model, run_replications

__all__ = [
    "ModelConfig",
    "load_model",
    "build_model",
    "NoAcceptableTrajectory",
    "Trajectory",
    "TrajectoryResult",
    "run_model",
    "run_replications",
]

from __future__ import annotations

from typing import Dict, List, Optional

import numpy as np
import pandas as pd


class TrajectoryOutputs:
    """
    Rows recorded while a trajectory runs.

    Simulation rows are written at every output interval, observation rows at
    every observation period boundary. Both are kept only when trajectory
    storage is on; calibration rows are kept whenever calibration targets exist.
    """

    def __init__(self, store_trajectories: bool, keep_calibration: bool):
        self.store_trajectories = store_trajectories
        self.keep_calibration = keep_calibration
        self.reset()

    def reset(self) -> None:
        self._simulation_rows: List[Dict[str, float]] = []
        self._observation_rows: List[Dict[str, float]] = []
        self._calibration_rows: List[Dict[str, float]] = []

    def record_simulation(self, row: Dict[str, float]) -> None:
        if self.store_trajectories:
            self._simulation_rows.append(row)

    def record_observation(self, row: Dict[str, float]) -> None:
        if self.store_trajectories:
            self._observation_rows.append(row)

    def record_calibration(self, period: int, values: Dict[str, Optional[float]]) -> None:
        if self.keep_calibration:
            row = {"period": period}
            row.update({k: (np.nan if v is None else v) for k, v in values.items()})
            self._calibration_rows.append(row)

    def simulation_table(self) -> pd.DataFrame:
        return pd.DataFrame(self._simulation_rows)

    def observation_table(self) -> pd.DataFrame:
        return pd.DataFrame(self._observation_rows)

    def calibration_table(self) -> pd.DataFrame:
        return pd.DataFrame(self._calibration_rows)

"""Run report schema for model execution results."""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any


class RunReport(BaseModel):
    """Report of a model run: settings used, summary metrics and written artifacts."""

    model_config = ConfigDict(protected_namespaces=())

    model_path: str = Field(..., description="Path to model YAML file")
    model_name: str = Field(..., description="Model name")
    model_use: str = Field(..., description="simulation, calibration or optimization")
    first_seed: int = Field(..., description="Seed of the first replication")
    replications: int = Field(..., ge=1, description="Number of replications")
    metrics: Dict[str, float] = Field(..., description="Summary metrics over replications")
    outcome: Optional[Dict[str, Any]] = Field(default=None, description="Outcome of a single trajectory")
    artifacts: List[str] = Field(default_factory=list, description="List of artifact file paths")

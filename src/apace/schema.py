"""Schema validation for epidemic model configuration files."""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Annotated, Optional, List, Literal, Union
from pathlib import Path
import yaml


# A model input is either a literal number or the name of a parameter.
Ref = Union[float, str]

INF = float("inf")


class ParameterConfig(BaseModel):
    """Sampled model parameter."""
    name: str = Field(..., description="Parameter name")
    kind: Literal[
        "constant", "uniform", "triangular", "normal", "lognormal", "gamma", "beta", "poisson",
        "linear_combination", "multiplicative",
        "time_dependent_linear", "time_dependent_oscillating",
    ] = Field(default="constant", description="Parameter kind")

    value: Optional[float] = Field(default=None, description="Value of a constant parameter")
    low: Optional[float] = Field(default=None, description="Lower bound (uniform, triangular)")
    high: Optional[float] = Field(default=None, description="Upper bound (uniform, triangular)")
    mode: Optional[float] = Field(default=None, description="Mode (triangular)")
    mean: Optional[float] = Field(default=None, description="Mean (normal, lognormal, poisson)")
    sd: Optional[float] = Field(default=None, ge=0, description="Standard deviation (normal, lognormal)")
    shape: Optional[float] = Field(default=None, gt=0, description="Shape (gamma)")
    scale: Optional[float] = Field(default=None, gt=0, description="Scale (gamma)")
    a: Optional[float] = Field(default=None, gt=0, description="Alpha (beta)")
    b: Optional[float] = Field(default=None, gt=0, description="Beta (beta)")

    parameters: List[str] = Field(default_factory=list, description="Parameters combined by this one")
    coefficients: List[float] = Field(default_factory=list, description="Linear combination coefficients")
    inverse_first: bool = Field(default=False, description="Invert the first factor of a product")

    intercept: Optional[Ref] = Field(default=None, description="Intercept (time-dependent linear)")
    slope: Optional[Ref] = Field(default=None, description="Slope (time-dependent linear)")
    time_on: float = Field(default=0.0, ge=0, description="Time the linear trend starts")
    time_off: float = Field(default=INF, description="Time the linear trend stops")
    a0: Optional[Ref] = Field(default=None, description="Offset (oscillating)")
    a1: Optional[Ref] = Field(default=None, description="Amplitude (oscillating)")
    a2: Optional[Ref] = Field(default=None, description="Phase shift (oscillating)")
    a3: Optional[Ref] = Field(default=None, description="Period (oscillating)")

    update_at_each_time_step: bool = Field(default=False, description="Resample at every time step")

    @model_validator(mode="after")
    def validate_kind_fields(self):
        """Each kind needs its own fields."""
        required = {
            "constant": ["value"],
            "uniform": ["low", "high"],
            "triangular": ["low", "mode", "high"],
            "normal": ["mean", "sd"],
            "lognormal": ["mean", "sd"],
            "gamma": ["shape", "scale"],
            "beta": ["a", "b"],
            "poisson": ["mean"],
            "time_dependent_linear": ["intercept", "slope"],
            "time_dependent_oscillating": ["a0", "a1", "a2", "a3"],
        }.get(self.kind, [])
        missing = [f for f in required if getattr(self, f) is None]
        if missing:
            raise ValueError(f"Parameter '{self.name}' of kind {self.kind} is missing {missing}")

        if self.kind in ("uniform", "triangular") and self.low > self.high:
            raise ValueError(f"Parameter '{self.name}': low must not exceed high")
        if self.kind == "triangular" and not (self.low <= self.mode <= self.high):
            raise ValueError(f"Parameter '{self.name}': mode must lie in [low, high]")
        if self.kind in ("linear_combination", "multiplicative") and not self.parameters:
            raise ValueError(f"Parameter '{self.name}' of kind {self.kind} needs parameters")
        if self.kind == "linear_combination" and len(self.coefficients) != len(self.parameters):
            raise ValueError(f"Parameter '{self.name}': one coefficient per parameter is required")
        if self.kind == "time_dependent_linear" and self.time_off < self.time_on:
            raise ValueError(f"Parameter '{self.name}': time_off must not precede time_on")
        return self


class ProcessConfig(BaseModel):
    """Outgoing process of a normal class."""
    name: str = Field(..., description="Process name (unique across the model)")
    kind: Literal["rate", "transmission", "birth"] = Field(default="rate", description="Process kind")
    rate: Optional[Ref] = Field(default=None, description="Per-member rate (rate and birth processes)")
    pathogen: Optional[str] = Field(default=None, description="Pathogen driving a transmission process")
    destination: str = Field(..., description="Destination class")
    activating_intervention: Optional[str] = Field(
        default=None, description="Process is active only while this intervention is in effect")

    @model_validator(mode="after")
    def validate_trigger(self):
        """Rate processes need a rate, transmission processes a pathogen."""
        if self.kind == "transmission" and self.pathogen is None:
            raise ValueError(f"Transmission process '{self.name}' needs a pathogen")
        if self.kind != "transmission" and self.rate is None:
            raise ValueError(f"Process '{self.name}' needs a rate")
        return self


class ClassConfig(BaseModel):
    """Population compartment."""
    name: str = Field(..., description="Class name")
    kind: Literal["normal", "death", "splitting", "resource_monitor"] = Field(
        default="normal", description="Class kind")
    initial_members: Ref = Field(default=0, description="Initial number of members")
    empty_to_eradicate: bool = Field(default=False, description="Class must be empty for eradication")

    processes: List[ProcessConfig] = Field(default_factory=list, description="Outgoing processes")
    susceptibility: List[Ref] = Field(default_factory=list, description="Susceptibility per pathogen")
    infectivity: List[Ref] = Field(default_factory=list, description="Infectivity per pathogen")
    contact_row: int = Field(default=0, ge=0, description="Mixing group row in the contact matrices")

    probability: Optional[Ref] = Field(default=None, description="Probability of success (splitting)")
    destination_if_success: Optional[str] = Field(default=None, description="Splitting success branch")
    destination_if_failure: Optional[str] = Field(default=None, description="Splitting failure branch")

    resource: Optional[str] = Field(default=None, description="Monitored resource")
    units_per_arrival: float = Field(default=1.0, gt=0, description="Resource units consumed per arrival")
    destination_if_available: Optional[str] = Field(default=None, description="Branch when resource is available")
    destination_if_unavailable: Optional[str] = Field(default=None, description="Branch when resource is exhausted")

    cost_per_new_member: Ref = Field(default=0.0, description="Cost per arriving member")
    qaly_loss_per_new_member: Ref = Field(default=0.0, description="QALY loss per arriving member")
    cost_per_unit_time: Ref = Field(default=0.0, description="Cost per member per unit of time")
    health_utility_per_unit_time: Ref = Field(default=0.0, description="QALY per member per unit of time")

    show_members: bool = Field(default=True, description="Report current members")
    show_new_members: bool = Field(default=False, description="Report new members per output interval")
    show_accumulated_new_members: bool = Field(default=False, description="Report accumulated new members")

    @model_validator(mode="after")
    def validate_kind_payload(self):
        """Check the fields each class kind depends on."""
        if self.kind != "normal":
            if self.processes:
                raise ValueError(f"Class '{self.name}' of kind {self.kind} cannot have processes")
            if self.initial_members not in (0, 0.0):
                raise ValueError(f"Only normal classes can start with members ('{self.name}')")
        if self.kind == "splitting":
            if self.probability is None or not self.destination_if_success or not self.destination_if_failure:
                raise ValueError(f"Splitting class '{self.name}' needs probability and both destinations")
        if self.kind == "resource_monitor":
            if not self.resource or not self.destination_if_available or not self.destination_if_unavailable:
                raise ValueError(f"Resource monitor '{self.name}' needs a resource and both destinations")
        return self


class PredeterminedRule(BaseModel):
    rule: Literal["predetermined"] = "predetermined"
    value: int = Field(default=1, ge=0, le=1, description="Fixed on/off value")


class PeriodicRule(BaseModel):
    rule: Literal["periodic"] = "periodic"
    frequency: int = Field(..., gt=0, description="Cycle length in decision periods")
    duration: int = Field(..., gt=0, description="On duration in decision periods")

    @model_validator(mode="after")
    def validate_cycle(self):
        """The on phase has to fit in one cycle."""
        if self.duration > self.frequency:
            raise ValueError("periodic duration must not exceed frequency")
        return self


class ThresholdRule(BaseModel):
    rule: Literal["threshold"] = "threshold"
    statistic: str = Field(..., description="Observed statistic")
    threshold: float = Field(..., description="Trigger value")
    duration: int = Field(default=1, ge=1, description="Minimum use in decision periods")
    observation: Literal["accumulating", "past_period"] = Field(
        default="past_period", description="Which observation of the statistic is compared")


class IntervalRule(BaseModel):
    rule: Literal["interval"] = "interval"
    start: float = Field(default=0.0, ge=0, description="Window start time")
    end: float = Field(default=INF, description="Window end time (exclusive)")
    min_periods: int = Field(default=1, ge=1, description="Minimum block length in decision periods")

    @model_validator(mode="after")
    def validate_window(self):
        """Window must not be empty."""
        if self.end <= self.start:
            raise ValueError("interval end must be after start")
        return self


class DynamicRule(BaseModel):
    rule: Literal["dynamic"] = "dynamic"


SwitchingRuleConfig = Annotated[
    Union[PredeterminedRule, PeriodicRule, ThresholdRule, IntervalRule, DynamicRule],
    Field(discriminator="rule"),
]


class InterventionConfig(BaseModel):
    """Intervention and its switching rule."""
    name: str = Field(..., description="Intervention name")
    type: Literal["default", "additive"] = Field(default="additive", description="Intervention type")
    rule: SwitchingRuleConfig = Field(default_factory=PredeterminedRule, description="Switching rule")
    available_from: float = Field(default=0.0, ge=0, description="First time it can be turned on")
    available_until: float = Field(default=INF, description="Time from which it can no longer be on")
    resource: Optional[str] = Field(default=None, description="Resource required to turn on")
    delay: Ref = Field(default=0.0, description="Time between announcement and effect")
    remains_on_once_switched_on: bool = Field(default=False, description="Cannot be turned off once employed")
    fixed_cost: float = Field(default=0.0, ge=0, description="Cost charged when turned on")
    cost_per_unit_time: float = Field(default=0.0, ge=0, description="Cost per unit of time in effect")
    switch_off_penalty: float = Field(default=0.0, ge=0, description="Cost charged when turned off")
    contact_change: Optional[List[List[List[Ref]]]] = Field(
        default=None, description="Percent change of each contact matrix entry, one matrix per pathogen")

    @model_validator(mode="after")
    def validate_window(self):
        """Availability window must not be empty."""
        if self.available_until <= self.available_from:
            raise ValueError(f"Intervention '{self.name}': available_until must be after available_from")
        return self


class ResourceConfig(BaseModel):
    """Constrained resource."""
    name: str = Field(..., description="Resource name")
    replenishment: Literal["one_time", "periodic"] = Field(default="one_time", description="Replenishment scheme")
    first_available_time: Ref = Field(default=0.0, description="Time of the first replenishment")
    quantity: Ref = Field(..., description="Units added at each replenishment")
    interval: Optional[Ref] = Field(default=None, description="Time between replenishments (periodic)")

    @model_validator(mode="after")
    def validate_interval(self):
        """Periodic resources need an interval."""
        if self.replenishment == "periodic" and self.interval is None:
            raise ValueError(f"Periodic resource '{self.name}' needs an interval")
        return self


class CalibrationConfig(BaseModel):
    """Calibration target attached to a statistic."""
    check_within_feasible_range: bool = Field(default=True, description="Reject trajectories out of range")
    feasible_min: float = Field(default=-INF, description="Lower bound of the feasible range")
    feasible_max: float = Field(default=INF, description="Upper bound of the feasible range")
    goodness_of_fit: Literal["feasible_range_only", "likelihood", "fourier"] = Field(
        default="feasible_range_only", description="Goodness of fit measure")
    weight: float = Field(default=1.0, ge=0, description="Weight in the overall fit")

    @model_validator(mode="after")
    def validate_range(self):
        """Range must be ordered and usable."""
        if self.feasible_min > self.feasible_max:
            raise ValueError("feasible_min must not exceed feasible_max")
        if self.goodness_of_fit == "feasible_range_only" and not self.check_within_feasible_range:
            raise ValueError("feasible_range_only calibration requires check_within_feasible_range")
        return self


class SummationStatisticConfig(BaseModel):
    """Sum over classes or processes."""
    name: str = Field(..., description="Statistic name")
    type: Literal["incidence", "accumulating_incidence", "prevalence"] = Field(..., description="Statistic type")
    defined_on: Literal["classes", "processes"] = Field(default="classes", description="What is summed")
    members: List[str] = Field(..., min_length=1, description="Class or process names")
    cost_per_unit: float = Field(default=0.0, description="Cost per counted unit")
    qaly_loss_per_unit: float = Field(default=0.0, description="QALY loss per counted unit")
    surveillance_delay: int = Field(default=0, ge=0, description="Observation periods until observed")
    calibration: Optional[CalibrationConfig] = Field(default=None, description="Calibration target")

    @model_validator(mode="after")
    def validate_events(self):
        """Processes have no prevalence."""
        if self.defined_on == "processes" and self.type == "prevalence":
            raise ValueError(f"Statistic '{self.name}': prevalence cannot be defined on processes")
        return self


class RatioStatisticConfig(BaseModel):
    """Ratio of two summation statistics."""
    name: str = Field(..., description="Statistic name")
    type: Literal[
        "incidence/incidence", "accumulated/accumulated", "prevalence/prevalence", "incidence/prevalence",
    ] = Field(..., description="Ratio type")
    numerator: str = Field(..., description="Numerator summation statistic")
    denominator: str = Field(..., description="Denominator summation statistic")
    calibration: Optional[CalibrationConfig] = Field(default=None, description="Calibration target")


class FeatureConfig(BaseModel):
    """Policy input read at decision points."""
    name: str = Field(..., description="Feature name")
    kind: Literal["epidemic_time", "statistic", "resource", "intervention"] = Field(..., description="Source")
    target: Optional[str] = Field(default=None, description="Statistic, resource or intervention name")
    measure: Literal[
        "value", "slope", "status", "ever_on", "ever_off", "time_since_on", "time_since_off",
    ] = Field(default="value", description="What is read from the target")
    multiplier: float = Field(default=1.0, description="Scale applied to slopes")

    @model_validator(mode="after")
    def validate_target(self):
        """Only epidemic time has no target."""
        if self.kind != "epidemic_time" and not self.target:
            raise ValueError(f"Feature '{self.name}' needs a target")
        allowed = {
            "epidemic_time": {"value"},
            "statistic": {"value", "slope"},
            "resource": {"value"},
            "intervention": {"status", "ever_on", "ever_off", "time_since_on", "time_since_off"},
        }[self.kind]
        if self.measure not in allowed:
            raise ValueError(f"Feature '{self.name}': measure {self.measure} not valid for {self.kind}")
        return self


class PolicyConfig(BaseModel):
    """Policy used for dynamically controlled interventions."""
    kind: Literal["static", "greedy_q"] = Field(default="static", description="Policy kind")
    preferred_on: Optional[List[str]] = Field(
        default=None, description="Interventions a static policy tries to keep on (all if omitted)")
    epsilon: float = Field(default=0.1, ge=0, le=1, description="Exploration rate in optimization mode")
    learning_rate: float = Field(default=0.01, gt=0, description="Step size of Q-value updates")


class SettingsConfig(BaseModel):
    """Simulation settings."""
    model_config = ConfigDict(protected_namespaces=())

    delta_t: float = Field(..., gt=0, description="Time step")
    horizon: float = Field(..., gt=0, description="Simulation horizon")
    decision_interval: float = Field(..., gt=0, description="Time between decision points")
    observation_period: float = Field(..., gt=0, description="Length of an observation period")
    output_interval: Optional[float] = Field(default=None, gt=0, description="Time between output rows")
    warm_up: float = Field(default=0.0, ge=0, description="Warm-up period")
    epidemic_condition_time: float = Field(default=0.0, ge=0, description="Minimum time to accept a trajectory")
    decision_start_time: float = Field(default=0.0, ge=0, description="First decision point")
    annual_interest_rate: float = Field(default=0.0, ge=0, description="Annual interest rate")
    wtp: float = Field(default=0.0, ge=0, description="Willingness to pay for one QALY")
    objective: Literal["nmb", "nhb"] = Field(default="nmb", description="Objective function")
    model_use: Literal["simulation", "calibration", "optimization"] = Field(
        default="simulation", description="What the trajectories are used for")
    decision_mode: Literal["policy", "prespecified"] = Field(default="policy", description="Decision source")
    prespecified_decisions: List[List[str]] = Field(
        default_factory=list, description="Interventions on in each decision period (last entry repeats)")
    initial_interventions: List[str] = Field(default_factory=list, description="Interventions on at time 0")
    store_trajectories: bool = Field(default=True, description="Keep output tables")
    max_seed_attempts: int = Field(default=100, ge=1, description="Seeds tried to find an acceptable trajectory")

    @model_validator(mode="after")
    def validate_steps(self):
        """Every interval must span at least one time step."""
        for field_name in ("decision_interval", "observation_period", "horizon"):
            if round(getattr(self, field_name) / self.delta_t) < 1:
                raise ValueError(f"{field_name} must be at least delta_t")
        if self.output_interval is not None and round(self.output_interval / self.delta_t) < 1:
            raise ValueError("output_interval must be at least delta_t")
        if self.objective == "nhb" and self.wtp <= 0:
            raise ValueError("Net health benefit requires a positive wtp")
        if self.decision_mode == "prespecified" and not self.prespecified_decisions:
            raise ValueError("prespecified decision mode needs prespecified_decisions")
        return self

    def steps(self, time: float) -> int:
        """Convert a time to a number of time steps."""
        if time == INF:
            return 2 ** 62
        return int(round(time / self.delta_t))


class OutputsConfig(BaseModel):
    """Output configuration."""
    out_dir: str = Field(default="runs", description="Output directory")
    save_csv: bool = Field(default=True, description="Save CSV output tables")
    replications: int = Field(default=1, ge=1, description="Number of trajectories to run")


class ModelConfig(BaseModel):
    """Schema for epidemic model configuration files."""

    name: str = Field(..., description="Model name")
    seed: int = Field(default=0, ge=0, description="Seed of the first trajectory")
    description: Optional[str] = Field(default=None, description="Model description")

    pathogens: List[str] = Field(default_factory=list, description="Pathogen names")
    contact_matrices: List[List[List[float]]] = Field(
        default_factory=list, description="Base contact matrix per pathogen over mixing groups")

    parameters: List[ParameterConfig] = Field(default_factory=list, description="Parameters")
    classes: List[ClassConfig] = Field(..., min_length=1, description="Classes")
    interventions: List[InterventionConfig] = Field(default_factory=list, description="Interventions")
    resources: List[ResourceConfig] = Field(default_factory=list, description="Resources")
    summation_statistics: List[SummationStatisticConfig] = Field(default_factory=list)
    ratio_statistics: List[RatioStatisticConfig] = Field(default_factory=list)
    features: List[FeatureConfig] = Field(default_factory=list, description="Policy features")
    policy: PolicyConfig = Field(default_factory=PolicyConfig, description="Policy configuration")

    settings: SettingsConfig = Field(..., description="Simulation settings")
    outputs: OutputsConfig = Field(default_factory=OutputsConfig, description="Output configuration")

    @field_validator("contact_matrices")
    @classmethod
    def validate_square(cls, v: List[List[List[float]]]) -> List[List[List[float]]]:
        """Contact matrices are square and non-negative."""
        for matrix in v:
            if any(len(row) != len(matrix) for row in matrix):
                raise ValueError("contact matrices must be square")
            if any(x < 0 for row in matrix for x in row):
                raise ValueError("contact matrix entries must be non-negative")
        return v

    @model_validator(mode="after")
    def validate_names(self):
        """Names are unique within each kind of entity and matrices match pathogens."""
        groups = {
            "parameter": [p.name for p in self.parameters],
            "class": [c.name for c in self.classes],
            "intervention": [i.name for i in self.interventions],
            "resource": [r.name for r in self.resources],
            "process": [p.name for c in self.classes for p in c.processes],
            "statistic": [s.name for s in self.summation_statistics] + [s.name for s in self.ratio_statistics],
            "feature": [f.name for f in self.features],
        }
        for label, names in groups.items():
            dupes = sorted({n for n in names if names.count(n) > 1})
            if dupes:
                raise ValueError(f"Duplicate {label} names: {dupes}")
        if len(self.contact_matrices) != len(self.pathogens):
            raise ValueError("one contact matrix per pathogen is required")
        return self

    @property
    def n_groups(self) -> int:
        """Number of mixing groups."""
        return len(self.contact_matrices[0]) if self.contact_matrices else 1


def load_model(path: str) -> ModelConfig:
    """Load and validate a model from a YAML file."""
    model_path = Path(path)
    if not model_path.exists():
        raise FileNotFoundError(f"Model file not found: {path}")

    with open(model_path, "r") as f:
        data = yaml.safe_load(f)

    return ModelConfig(**data)

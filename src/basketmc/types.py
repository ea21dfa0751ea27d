"""
Copyright 2025 The Flame Authors.
Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at
    http://www.apache.org/licenses/LICENSE-2.0
Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Type aliases
ResultID = str
TaskID = str
SessionID = str
PartialValue = Union[float, str, bytes]

# Task option carrying the use-case tag of a unit of work.
USE_CASE_KEY = "UseCase"


class ErrorCode(IntEnum):
    """Error codes for basket valuation failures."""

    INVALID_CONFIG = 0
    INVALID_PAYLOAD = 1
    USE_CASE_NOT_FOUND = 2
    AGGREGATION_ORDER = 3
    TASK_FAILED = 4
    TIMEOUT = 5
    INTERNAL = 6


CONFIGURATION_ERRORS = frozenset(
    {
        ErrorCode.INVALID_CONFIG,
        ErrorCode.INVALID_PAYLOAD,
        ErrorCode.USE_CASE_NOT_FOUND,
    }
)


class BasketError(Exception):
    """Exception raised by the basket valuation core and its platform."""

    def __init__(self, code: ErrorCode, message: str):
        self.code = code
        self.message = message
        super().__init__(message)

    def is_configuration_error(self) -> bool:
        return self.code in CONFIGURATION_ERRORS


class UseCase(str, Enum):
    """Role of a unit of work in the scatter/gather chain."""

    LAUNCH = "Launch"
    WORKER = "MonteCarloWorker"
    JOINER = "Joiner"

    @classmethod
    def parse(cls, tag: Optional[str]) -> "UseCase":
        for use_case in cls:
            if use_case.value == tag:
                return use_case
        raise BasketError(ErrorCode.USE_CASE_NOT_FOUND, "UseCase not found")


class Aggregation(str, Enum):
    """How the joiner combines the partial results of its workers."""

    MEAN = "mean"
    VECTOR = "vector"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        # NaN and infinities are valid inputs and must survive the wire.
        ser_json_inf_nan="constants",
    )


class Asset(_WireModel):
    """One risky asset of a basket."""

    name: str
    spot: float = Field(gt=0)
    volatility: float = Field(ge=0)
    weight: float


Basket = Tuple[Asset, ...]


class SimulationRequest(_WireModel):
    """A logical basket valuation, possibly split across several workers.

    Attributes:
        basket: Ordered assets to value jointly.
        risk_free_rate: Continuously compounded annual rate.
        time_horizon: Valuation horizon in years.
        path_count: Total number of paths of the logical simulation.
        subtask_count: Number of independent workers the paths are split across.
        aggregation: How the joiner combines the worker results.
        seed: Optional base seed; each worker derives its own stream from it.
    """

    basket: Basket = Field(min_length=1)
    risk_free_rate: float
    time_horizon: float = Field(gt=0)
    path_count: int = Field(ge=1)
    subtask_count: int = 1
    aggregation: Aggregation = Aggregation.MEAN
    seed: Optional[int] = None

    def closed_form_value(self) -> float:
        """Risk-neutral expectation of the discounted basket, sum of weight * spot."""
        return sum(asset.weight * asset.spot for asset in self.basket)


class WorkerPayload(_WireModel):
    """Payload of a worker unit: the request and this worker's share of paths."""

    request: SimulationRequest
    index: int = Field(ge=0)
    path_count: int = Field(ge=1)


class JoinerPayload(_WireModel):
    """Payload of a joiner unit: its policy and dependencies in declaration order."""

    aggregation: Aggregation = Aggregation.MEAN
    dependencies: Tuple[ResultID, ...] = Field(min_length=1)


@dataclass(frozen=True)
class PartialResult:
    """Output of one worker unit."""

    value: PartialValue
    paths: Optional[int] = None


@dataclass(frozen=True)
class AggregateResult:
    """Final output of a joiner unit."""

    mode: Aggregation
    count: int
    value: Optional[float] = None
    values: Optional[Tuple[PartialValue, ...]] = None
    paths: Optional[int] = None


@dataclass
class TaskOptions:
    """Options attached to a submitted unit of work."""

    max_retries: int = 2
    priority: int = 1
    partition_id: Optional[str] = None
    options: Dict[str, str] = field(default_factory=dict)

    @property
    def use_case(self) -> Optional[str]:
        return self.options.get(USE_CASE_KEY)

    @classmethod
    def for_use_case(cls, use_case: UseCase, base: Optional["TaskOptions"] = None) -> "TaskOptions":
        """Copy `base` (or the defaults) with the use-case tag replaced."""
        if base is None:
            base = cls()
        options = dict(base.options)
        options[USE_CASE_KEY] = use_case.value
        return cls(
            max_retries=base.max_retries,
            priority=base.priority,
            partition_id=base.partition_id,
            options=options,
        )


@dataclass
class TaskCreation:
    """Specification of a unit of work handed to the platform for submission."""

    payload: bytes
    expected_output_keys: List[ResultID]
    data_dependencies: List[ResultID] = field(default_factory=list)
    task_options: Optional[TaskOptions] = None


@dataclass(frozen=True)
class Output:
    """Terminal state of a unit of work."""

    error: Optional[str] = None
    code: Optional[ErrorCode] = None

    @classmethod
    def ok(cls) -> "Output":
        return cls()

    @classmethod
    def failure(cls, details: str, code: ErrorCode = ErrorCode.INTERNAL) -> "Output":
        return cls(error=details or code.name, code=code)

    def is_ok(self) -> bool:
        return self.code is None

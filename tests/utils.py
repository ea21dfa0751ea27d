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

import math
from typing import Dict, List, Mapping, Optional

from basketmc.handler import TaskHandler
from basketmc.types import Asset, SimulationRequest, TaskCreation, TaskOptions, UseCase

SAMPLE_BASKET = (
    Asset(name="AAPL", spot=180.0, volatility=0.25, weight=0.4),
    Asset(name="MSFT", spot=350.0, volatility=0.20, weight=0.3),
    Asset(name="GOOGL", spot=140.0, volatility=0.28, weight=0.3),
)

SAMPLE_VALUE = 219.0


def sample_request(**kwargs) -> SimulationRequest:
    """Build a request on the sample basket, overriding any field with kwargs."""
    fields = dict(
        basket=SAMPLE_BASKET,
        risk_free_rate=0.05,
        time_horizon=1.0,
        path_count=10000,
        subtask_count=4,
    )
    fields.update(kwargs)
    return SimulationRequest(**fields)


def path_stddev(request: SimulationRequest) -> float:
    """Standard deviation of one discounted basket path, assets drawn independently."""
    variance = 0.0
    for asset in request.basket:
        scale = asset.weight * asset.spot
        variance += scale * scale * (math.exp(asset.volatility ** 2 * request.time_horizon) - 1.0)
    return math.sqrt(variance)


class FakeTaskHandler(TaskHandler):
    """In-memory task handler recording what a worker service does."""

    def __init__(
        self,
        payload: Optional[bytes],
        use_case: Optional[str],
        expected_results: Optional[List[str]] = None,
        data_dependencies: Optional[Mapping[str, bytes]] = None,
    ):
        options = {} if use_case is None else {"UseCase": use_case}
        self._options = TaskOptions(partition_id="subtasking", options=options)
        self._payload = payload
        self._expected = list(expected_results or ["output"])
        self._dependencies = dict(data_dependencies or {})
        self.created: List[str] = []
        self.submitted: List[TaskCreation] = []
        self.sent: Dict[str, bytes] = {}

    @classmethod
    def for_use_case(cls, use_case: UseCase, payload: Optional[bytes], **kwargs) -> "FakeTaskHandler":
        return cls(payload, use_case.value, **kwargs)

    @property
    def session_id(self) -> str:
        return "session-0"

    @property
    def task_id(self) -> str:
        return "task-0"

    @property
    def payload(self) -> Optional[bytes]:
        return self._payload

    @property
    def task_options(self) -> TaskOptions:
        return self._options

    @property
    def expected_results(self) -> List[str]:
        return self._expected

    @property
    def data_dependencies(self) -> Mapping[str, bytes]:
        return self._dependencies

    def create_result_ids(self, names: List[str]) -> List[str]:
        ids = [f"result-{len(self.created) + i}" for i in range(len(names))]
        self.created.extend(ids)
        return ids

    def submit_tasks(self, creations: List[TaskCreation]) -> None:
        self.submitted.extend(creations)

    def send_result(self, result_id: str, data: bytes) -> None:
        self.sent[result_id] = data

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

import logging
from abc import ABC, abstractmethod
from typing import List, Mapping

from .types import Output, ResultID, SessionID, TaskCreation, TaskID, TaskOptions

logger = logging.getLogger(__name__)


class TraceFn:
    def __init__(self, name: str):
        self.name = name
        logger.debug(f"{name} Enter")

    def __del__(self):
        logger.debug(f"{self.name} Exit")


class TaskHandler(ABC):
    """Abstract view of one unit of work, as handed over by the task platform.

    The platform owns sessions, result storage and dependency scheduling; a
    worker service only sees the unit's payload, its declared outputs, the
    data of its dependencies, and the operations below.
    """

    @property
    @abstractmethod
    def session_id(self) -> SessionID:
        pass

    @property
    @abstractmethod
    def task_id(self) -> TaskID:
        pass

    @property
    @abstractmethod
    def payload(self) -> bytes:
        """Payload bytes the unit was submitted with."""
        pass

    @property
    @abstractmethod
    def task_options(self) -> TaskOptions:
        pass

    @property
    @abstractmethod
    def expected_results(self) -> List[ResultID]:
        """Output slots the unit must fill before reporting success."""
        pass

    @property
    @abstractmethod
    def data_dependencies(self) -> Mapping[ResultID, bytes]:
        """Data of every declared dependency, keyed by result id.

        The platform only invokes a unit once all of its dependencies exist.
        Iteration order of the mapping carries no meaning.
        """
        pass

    @abstractmethod
    def create_result_ids(self, names: List[str]) -> List[ResultID]:
        """Create result metadata in the unit's session.

        Args:
            names: Names of the results to create

        Returns:
            The ids of the created results, in the order of `names`
        """
        pass

    @abstractmethod
    def submit_tasks(self, creations: List[TaskCreation]) -> None:
        """Submit new units of work to the unit's session.

        Args:
            creations: Specifications of the units to submit
        """
        pass

    @abstractmethod
    def send_result(self, result_id: ResultID, data: bytes) -> None:
        """Write the data of one of the unit's output slots.

        Args:
            result_id: One of `expected_results`
            data: Payload to store
        """
        pass


class WorkerService(ABC):
    """Base class for services executing units of work."""

    @abstractmethod
    def process(self, handler: TaskHandler) -> Output:
        """
        Called when a unit of work is invoked.

        Args:
            handler: Handler holding the unit's payload, metadata and helpers

        Returns:
            Output.ok() once every output slot is written, Output.failure() otherwise
        """
        pass

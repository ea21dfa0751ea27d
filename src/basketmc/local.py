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
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Mapping, Optional

from .handler import TaskHandler, WorkerService
from .types import (
    BasketError,
    ErrorCode,
    Output,
    ResultID,
    SessionID,
    TaskCreation,
    TaskID,
    TaskOptions,
)

logger = logging.getLogger(__name__)


class TaskState(IntEnum):
    PENDING = 0
    RUNNING = 1
    SUCCEED = 2
    FAILED = 3


class ResultState(IntEnum):
    CREATED = 0
    COMPLETED = 1
    ABORTED = 2


@dataclass
class ResultInfo:
    id: ResultID
    session_id: SessionID
    name: str
    state: ResultState = ResultState.CREATED
    data: Optional[bytes] = None
    message: Optional[str] = None
    owner: Optional[TaskID] = None
    sequence: int = 0


@dataclass
class TaskInfo:
    id: TaskID
    session_id: SessionID
    creation: TaskCreation
    task_options: TaskOptions
    state: TaskState = TaskState.PENDING
    message: Optional[str] = None


class LocalTaskHandler(TaskHandler):
    """Handler of a unit executed by the LocalPlatform.

    Results and submissions are buffered and only committed by the platform
    when the unit reports success.
    """

    def __init__(self, platform: "LocalPlatform", task: TaskInfo, dependencies: Dict[ResultID, bytes]):
        self._platform = platform
        self._task = task
        self._dependencies = dependencies
        self.sent: Dict[ResultID, bytes] = {}
        self.submitted: List[TaskCreation] = []

    @property
    def session_id(self) -> SessionID:
        return self._task.session_id

    @property
    def task_id(self) -> TaskID:
        return self._task.id

    @property
    def payload(self) -> bytes:
        return self._task.creation.payload

    @property
    def task_options(self) -> TaskOptions:
        return self._task.task_options

    @property
    def expected_results(self) -> List[ResultID]:
        return list(self._task.creation.expected_output_keys)

    @property
    def data_dependencies(self) -> Mapping[ResultID, bytes]:
        return self._dependencies

    def create_result_ids(self, names: List[str]) -> List[ResultID]:
        return self._platform.create_results_metadata(self.session_id, names)

    def submit_tasks(self, creations: List[TaskCreation]) -> None:
        for creation in creations:
            if not creation.expected_output_keys:
                raise BasketError(ErrorCode.INVALID_CONFIG, "submitted task declares no expected output")
        self.submitted.extend(creations)

    def send_result(self, result_id: ResultID, data: bytes) -> None:
        if result_id not in self._task.creation.expected_output_keys:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"result {result_id} is not an expected output of task {self.task_id}")
        self.sent[result_id] = bytes(data)


class LocalPlatform:
    """In-process task platform running units on a thread pool.

    A unit is started once every one of its data dependencies is completed;
    when a unit fails, its outputs are aborted and every unit depending on
    them fails in turn. Units are never retried.
    """

    def __init__(self, service: WorkerService, max_workers: int = 4):
        if max_workers < 1:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"max_workers must be positive, got {max_workers}")

        self._service = service
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._cond = threading.Condition()
        self._sessions: Dict[SessionID, TaskOptions] = {}
        self._results: Dict[ResultID, ResultInfo] = {}
        self._tasks: Dict[TaskID, TaskInfo] = {}
        self._pending: List[TaskID] = []
        self._sequence = 0
        self._closed = False

    def __enter__(self) -> "LocalPlatform":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        with self._cond:
            self._closed = True
        self._executor.shutdown(wait=True)

    def create_session(self, default_task_options: Optional[TaskOptions] = None) -> SessionID:
        session_id = str(uuid.uuid4())
        with self._cond:
            self._check_open()
            self._sessions[session_id] = default_task_options or TaskOptions()
        logger.info(f"Created session <{session_id}>")
        return session_id

    def create_results_metadata(self, session_id: SessionID, names: List[str]) -> List[ResultID]:
        with self._cond:
            self._check_session(session_id)
            ids = []
            for name in names:
                result_id = str(uuid.uuid4())
                self._results[result_id] = ResultInfo(id=result_id, session_id=session_id, name=name)
                ids.append(result_id)
            return ids

    def submit_tasks(
        self,
        session_id: SessionID,
        creations: List[TaskCreation],
        task_options: Optional[TaskOptions] = None,
    ) -> List[TaskID]:
        with self._cond:
            self._check_open()
            self._check_session(session_id)
            for creation in creations:
                self._check_creation(session_id, creation)
            task_ids = [self._submit_locked(session_id, creation, task_options) for creation in creations]
            self._schedule_locked()
            return task_ids

    def wait_for_results(self, session_id: SessionID, result_ids: List[ResultID], timeout: Optional[float] = None) -> None:
        """Block until all results are completed.

        Raises:
            BasketError: TASK_FAILED if one of the results is aborted,
                         TIMEOUT if the results are not available in time
        """
        with self._cond:
            self._check_session(session_id)
            results = [self._get_result_locked(session_id, result_id) for result_id in result_ids]

            def settled() -> bool:
                return all(r.state == ResultState.COMPLETED for r in results) or any(
                    r.state == ResultState.ABORTED for r in results
                )

            if not self._cond.wait_for(settled, timeout=timeout):
                raise BasketError(ErrorCode.TIMEOUT, f"timeout waiting for results {result_ids}")

            for r in results:
                if r.state == ResultState.ABORTED:
                    raise BasketError(ErrorCode.TASK_FAILED, f"result {r.id} aborted: {r.message}")

    def download_result(self, session_id: SessionID, result_id: ResultID) -> bytes:
        with self._cond:
            result = self._get_result_locked(session_id, result_id)
            if result.state != ResultState.COMPLETED:
                raise BasketError(ErrorCode.INVALID_CONFIG, f"result {result_id} is not available")
            return result.data

    def get_task(self, task_id: TaskID) -> TaskInfo:
        with self._cond:
            if task_id not in self._tasks:
                raise BasketError(ErrorCode.INVALID_CONFIG, f"task {task_id} not found")
            return self._tasks[task_id]

    def list_tasks(self, session_id: SessionID) -> List[TaskInfo]:
        with self._cond:
            self._check_session(session_id)
            return [t for t in self._tasks.values() if t.session_id == session_id]

    def _check_open(self) -> None:
        if self._closed:
            raise BasketError(ErrorCode.INVALID_CONFIG, "platform is closed")

    def _check_session(self, session_id: SessionID) -> None:
        if session_id not in self._sessions:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"session <{session_id}> not found")

    def _get_result_locked(self, session_id: SessionID, result_id: ResultID) -> ResultInfo:
        result = self._results.get(result_id)
        if result is None or result.session_id != session_id:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"result {result_id} not found in session <{session_id}>")
        return result

    def _check_creation(self, session_id: SessionID, creation: TaskCreation, parent: Optional[TaskInfo] = None) -> None:
        if not creation.expected_output_keys:
            raise BasketError(ErrorCode.INVALID_CONFIG, "task declares no expected output")
        for result_id in creation.expected_output_keys:
            result = self._get_result_locked(session_id, result_id)
            delegated = parent is not None and result.owner == parent.id
            if result.owner is not None and not delegated:
                raise BasketError(ErrorCode.INVALID_CONFIG, f"result {result_id} is already owned by task {result.owner}")
        for result_id in creation.data_dependencies:
            self._get_result_locked(session_id, result_id)

    def _submit_locked(
        self,
        session_id: SessionID,
        creation: TaskCreation,
        task_options: Optional[TaskOptions],
    ) -> TaskID:
        options = creation.task_options or task_options or self._sessions[session_id]
        task = TaskInfo(
            id=str(uuid.uuid4()),
            session_id=session_id,
            creation=creation,
            task_options=options,
        )
        self._tasks[task.id] = task
        for result_id in creation.expected_output_keys:
            self._results[result_id].owner = task.id
        self._pending.append(task.id)
        logger.debug(f"Submitted task {task.id} ({options.use_case}) in session <{session_id}>")
        return task.id

    def _schedule_locked(self) -> None:
        changed = True
        while changed:
            changed = False
            for task_id in list(self._pending):
                task = self._tasks[task_id]
                deps = [self._results[r] for r in task.creation.data_dependencies]
                aborted = [r for r in deps if r.state == ResultState.ABORTED]
                if aborted:
                    self._pending.remove(task_id)
                    self._fail_locked(task, f"dependency {aborted[0].id} aborted: {aborted[0].message}")
                    changed = True
                elif all(r.state == ResultState.COMPLETED for r in deps):
                    if self._closed:
                        continue
                    self._pending.remove(task_id)
                    task.state = TaskState.RUNNING
                    # Delivered in completion order, not declaration order.
                    ordered = sorted(deps, key=lambda r: r.sequence)
                    dependencies = {r.id: r.data for r in ordered}
                    self._executor.submit(self._run, task, dependencies)
        self._cond.notify_all()

    def _run(self, task: TaskInfo, dependencies: Dict[ResultID, bytes]) -> None:
        handler = LocalTaskHandler(self, task, dependencies)
        try:
            output = self._service.process(handler)
        except Exception as e:
            logger.exception(f"Unhandled error in task {task.id}")
            output = Output.failure(str(e), ErrorCode.INTERNAL)

        with self._cond:
            self._complete_locked(task, handler, output)
            self._schedule_locked()

    def _complete_locked(self, task: TaskInfo, handler: LocalTaskHandler, output: Output) -> None:
        if output.is_ok():
            delegated = {r for c in handler.submitted for r in c.expected_output_keys}
            missing = [r for r in task.creation.expected_output_keys if r not in handler.sent and r not in delegated]
            if missing:
                output = Output.failure(f"expected results {missing} were not produced", ErrorCode.TASK_FAILED)
            else:
                try:
                    for creation in handler.submitted:
                        self._check_creation(task.session_id, creation, parent=task)
                except BasketError as e:
                    output = Output.failure(e.message, e.code)

        if not output.is_ok():
            self._fail_locked(task, output.error)
            return

        for result_id, data in handler.sent.items():
            self._sequence += 1
            result = self._results[result_id]
            result.state = ResultState.COMPLETED
            result.data = data
            result.sequence = self._sequence
        for creation in handler.submitted:
            self._submit_locked(task.session_id, creation, None)

        task.state = TaskState.SUCCEED
        logger.debug(f"Task {task.id} succeeded")

    def _fail_locked(self, task: TaskInfo, message: str) -> None:
        task.state = TaskState.FAILED
        task.message = message
        for result_id in task.creation.expected_output_keys:
            result = self._results[result_id]
            if result.state == ResultState.CREATED:
                result.state = ResultState.ABORTED
                result.message = message
        logger.warning(f"Task {task.id} failed: {message}")

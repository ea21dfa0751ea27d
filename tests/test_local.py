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
import threading

import pytest

from basketmc.client import BasketClient, value_basket
from basketmc.codec import decode_worker_payload, encode_request
from basketmc.engine import simulate
from basketmc.handler import WorkerService
from basketmc.local import LocalPlatform, TaskState
from basketmc.rng import NormalSource
from basketmc.types import (
    Aggregation,
    BasketError,
    ErrorCode,
    Output,
    TaskCreation,
    TaskOptions,
    UseCase,
)
from basketmc.worker import MonteCarloWorker, apportion_paths
from tests.utils import SAMPLE_VALUE, sample_request


def _launch(platform, request):
    """Submit a Launch unit; return its session and output slot."""
    session_id = platform.create_session(TaskOptions.for_use_case(UseCase.LAUNCH))
    result_id = platform.create_results_metadata(session_id, ["Result"])[0]
    platform.submit_tasks(session_id, [TaskCreation(payload=encode_request(request), expected_output_keys=[result_id])])
    return session_id, result_id


class FailingWorker(WorkerService):
    """Monte Carlo service whose worker with the given index fails."""

    def __init__(self, index: int):
        self._index = index
        self._inner = MonteCarloWorker()

    def process(self, handler):
        if handler.task_options.use_case == UseCase.WORKER.value:
            if decode_worker_payload(handler.payload).index == self._index:
                return Output.failure("worker crashed", ErrorCode.INTERNAL)
        return self._inner.process(handler)


class BlockingService(WorkerService):
    def __init__(self):
        self.release = threading.Event()

    def process(self, handler):
        self.release.wait()
        return Output.ok()


class SilentService(WorkerService):
    def process(self, handler):
        return Output.ok()


def test_scatter_gather_mean(platform):
    request = sample_request(path_count=20000, subtask_count=4, seed=1)

    result = BasketClient(platform, timeout=60).value(request)

    assert result.mode is Aggregation.MEAN
    assert result.count == 4
    assert result.paths == 20000
    assert result.value == pytest.approx(SAMPLE_VALUE, rel=0.05)


def test_scatter_gather_runs_every_unit(platform):
    session_id, result_id = _launch(platform, sample_request(path_count=1000, subtask_count=3))

    platform.wait_for_results(session_id, [result_id], timeout=60)

    tasks = platform.list_tasks(session_id)
    assert len(tasks) == 5
    assert all(task.state == TaskState.SUCCEED for task in tasks)
    use_cases = sorted(task.task_options.use_case for task in tasks)
    assert use_cases == ["Joiner", "Launch", "MonteCarloWorker", "MonteCarloWorker", "MonteCarloWorker"]


def test_scatter_gather_vector_keeps_worker_order(platform):
    request = sample_request(path_count=1000, subtask_count=3, seed=7, aggregation=Aggregation.VECTOR)

    result = BasketClient(platform, timeout=60).value(request)

    expected = tuple(
        simulate(request.basket, 0.05, 1.0, share, NormalSource.for_unit(7, index))
        for index, share in enumerate(apportion_paths(1000, 3))
    )
    assert result.values == expected


def test_single_worker(platform):
    request = sample_request(path_count=2000, seed=3)

    value = BasketClient(platform, timeout=60).simulate(request)

    assert value == simulate(request.basket, 0.05, 1.0, 2000, NormalSource.for_unit(3, 0))


def test_failed_worker_fails_the_joiner():
    with LocalPlatform(FailingWorker(index=1), max_workers=2) as platform:
        session_id, result_id = _launch(platform, sample_request(path_count=300, subtask_count=3))

        with pytest.raises(BasketError) as exc_info:
            platform.wait_for_results(session_id, [result_id], timeout=60)
        assert exc_info.value.code == ErrorCode.TASK_FAILED

        states = {task.task_options.use_case: task.state for task in platform.list_tasks(session_id)}
        assert states["Launch"] == TaskState.SUCCEED
        assert states["Joiner"] == TaskState.FAILED


def test_launch_with_no_subtasks_fails(platform):
    session_id, result_id = _launch(platform, sample_request(subtask_count=0))

    with pytest.raises(BasketError) as exc_info:
        platform.wait_for_results(session_id, [result_id], timeout=60)

    assert exc_info.value.code == ErrorCode.TASK_FAILED
    assert "subtask count must be positive" in exc_info.value.message
    tasks = platform.list_tasks(session_id)
    assert len(tasks) == 1
    assert tasks[0].state == TaskState.FAILED


def test_wait_timeout():
    service = BlockingService()
    with LocalPlatform(service, max_workers=1) as platform:
        try:
            session_id = platform.create_session()
            result_id = platform.create_results_metadata(session_id, ["Result"])[0]
            platform.submit_tasks(session_id, [TaskCreation(payload=b"", expected_output_keys=[result_id])])

            with pytest.raises(BasketError) as exc_info:
                platform.wait_for_results(session_id, [result_id], timeout=0.1)
            assert exc_info.value.code == ErrorCode.TIMEOUT
        finally:
            service.release.set()


def test_missing_output_fails_the_unit():
    with LocalPlatform(SilentService(), max_workers=1) as platform:
        session_id = platform.create_session()
        result_id = platform.create_results_metadata(session_id, ["Result"])[0]
        task_id = platform.submit_tasks(session_id, [TaskCreation(payload=b"", expected_output_keys=[result_id])])[0]

        with pytest.raises(BasketError) as exc_info:
            platform.wait_for_results(session_id, [result_id], timeout=60)

        assert exc_info.value.code == ErrorCode.TASK_FAILED
        assert "were not produced" in platform.get_task(task_id).message


def test_output_slot_has_a_single_owner(platform):
    session_id = platform.create_session()
    result_id = platform.create_results_metadata(session_id, ["Result"])[0]
    creation = TaskCreation(payload=encode_request(sample_request()), expected_output_keys=[result_id])
    platform.submit_tasks(session_id, [creation], TaskOptions.for_use_case(UseCase.LAUNCH))

    with pytest.raises(BasketError) as exc_info:
        platform.submit_tasks(session_id, [creation])
    assert exc_info.value.code == ErrorCode.INVALID_CONFIG


def test_closed_platform_rejects_sessions():
    platform = LocalPlatform(MonteCarloWorker())
    platform.close()

    with pytest.raises(BasketError) as exc_info:
        platform.create_session()
    assert exc_info.value.code == ErrorCode.INVALID_CONFIG


def test_value_basket():
    result = value_basket(sample_request(path_count=4000, subtask_count=2), max_workers=2, timeout=60)

    assert result.count == 2
    assert result.paths == 4000


def test_non_finite_rate_flows_into_the_result(platform):
    request = sample_request(risk_free_rate=math.inf, path_count=100, subtask_count=2)

    result = BasketClient(platform, timeout=60).value(request)

    assert result.count == 2
    assert math.isnan(result.value)


class RecordingWorker(MonteCarloWorker):
    """Monte Carlo service remembering the partition of every unit it runs."""

    def __init__(self):
        self.partitions = []

    def process(self, handler):
        self.partitions.append(handler.task_options.partition_id)
        return super().process(handler)


def test_partition_reaches_every_unit():
    service = RecordingWorker()
    with LocalPlatform(service, max_workers=2) as platform:
        BasketClient(platform, timeout=60, partition_id="risk").value(sample_request(path_count=300, subtask_count=3))

    assert len(service.partitions) == 5
    assert set(service.partitions) == {"risk"}

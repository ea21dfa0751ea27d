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
import math
import uuid
from typing import List, Mapping, Optional, Sequence, Tuple

from .codec import (
    decode_joiner_payload,
    decode_partial,
    decode_request,
    decode_worker_payload,
    encode_aggregate,
    encode_joiner_payload,
    encode_partial,
    encode_worker_payload,
)
from .engine import BasketSimulator
from .handler import TaskHandler, TraceFn, WorkerService
from .rng import NormalSource
from .types import (
    Aggregation,
    AggregateResult,
    BasketError,
    ErrorCode,
    JoinerPayload,
    Output,
    PartialResult,
    ResultID,
    SimulationRequest,
    TaskCreation,
    TaskOptions,
    UseCase,
    WorkerPayload,
)

logger = logging.getLogger(__name__)


def apportion_paths(path_count: int, subtask_count: int) -> List[int]:
    """Split `path_count` evenly; the first `path_count % subtask_count` shares get one more path."""
    share, remainder = divmod(path_count, subtask_count)
    return [share + 1 if i < remainder else share for i in range(subtask_count)]


def check_decomposition(request: SimulationRequest) -> None:
    """Fail fast on a request that cannot be split across its subtasks."""
    if request.subtask_count <= 0:
        raise BasketError(
            ErrorCode.INVALID_CONFIG,
            f"subtask count must be positive, got {request.subtask_count}",
        )
    if request.path_count < request.subtask_count:
        raise BasketError(
            ErrorCode.INVALID_CONFIG,
            f"path count {request.path_count} is lower than subtask count {request.subtask_count}",
        )


def decompose(
    request: SimulationRequest,
    worker_result_ids: Sequence[ResultID],
    output_id: ResultID,
    task_options: Optional[TaskOptions] = None,
) -> Tuple[List[TaskCreation], TaskCreation]:
    """
    Split a simulation request into worker units and one joiner unit.

    Args:
        request: The logical simulation to split
        worker_result_ids: One fresh output slot per worker, in declaration order
        output_id: Output slot of the launching unit, delegated to the joiner
        task_options: Options the launching unit was submitted with

    Returns:
        The worker specifications and the joiner specification

    Raises:
        BasketError: INVALID_CONFIG if the request or the slots are inconsistent
    """
    check_decomposition(request)

    worker_ids = list(worker_result_ids)
    if len(worker_ids) != request.subtask_count:
        raise BasketError(
            ErrorCode.INVALID_CONFIG,
            f"expected {request.subtask_count} worker result ids, got {len(worker_ids)}",
        )
    if len(set(worker_ids)) != len(worker_ids):
        raise BasketError(ErrorCode.INVALID_CONFIG, "worker result ids must be unique")
    if output_id in worker_ids:
        raise BasketError(ErrorCode.INVALID_CONFIG, "joiner output cannot be one of its dependencies")

    worker_options = TaskOptions.for_use_case(UseCase.WORKER, task_options)
    workers = []
    for index, (result_id, paths) in enumerate(zip(worker_ids, apportion_paths(request.path_count, request.subtask_count))):
        payload = WorkerPayload(request=request, index=index, path_count=paths)
        workers.append(
            TaskCreation(
                payload=encode_worker_payload(payload),
                expected_output_keys=[result_id],
                task_options=worker_options,
            )
        )

    joiner = TaskCreation(
        payload=encode_joiner_payload(JoinerPayload(aggregation=request.aggregation, dependencies=tuple(worker_ids))),
        expected_output_keys=[output_id],
        data_dependencies=worker_ids,
        task_options=TaskOptions.for_use_case(UseCase.JOINER, task_options),
    )

    return workers, joiner


def order_dependencies(declared: Sequence[ResultID], delivered: Mapping[ResultID, bytes]) -> List[bytes]:
    """Return the delivered payloads in declaration order.

    Raises:
        BasketError: AGGREGATION_ORDER unless exactly the declared dependencies were delivered
    """
    if len(set(declared)) != len(declared):
        raise BasketError(ErrorCode.AGGREGATION_ORDER, "duplicate dependency ids declared")

    missing = [result_id for result_id in declared if result_id not in delivered]
    unexpected = [result_id for result_id in delivered if result_id not in set(declared)]
    if missing or unexpected:
        raise BasketError(
            ErrorCode.AGGREGATION_ORDER,
            f"declared {len(declared)} dependencies but observed {len(delivered)} "
            f"(missing: {missing}, unexpected: {unexpected})",
        )

    return [delivered[result_id] for result_id in declared]


def aggregate(partials: Sequence[PartialResult], mode: Aggregation = Aggregation.MEAN) -> AggregateResult:
    """
    Combine the partial results of the workers of one request.

    Args:
        partials: Partial results in dependency declaration order
        mode: MEAN for the arithmetic mean of numeric partials, VECTOR for the
              partial values verbatim

    Returns:
        The aggregate result

    Raises:
        BasketError: AGGREGATION_ORDER if there is nothing to aggregate,
                     INVALID_PAYLOAD if a partial is not numeric in MEAN mode
    """
    if not partials:
        raise BasketError(ErrorCode.AGGREGATION_ORDER, "no partial results to aggregate")

    if mode is Aggregation.VECTOR:
        return AggregateResult(
            mode=mode,
            count=len(partials),
            values=tuple(partial.value for partial in partials),
        )

    values = []
    for partial in partials:
        if isinstance(partial.value, bool) or not isinstance(partial.value, (int, float)):
            raise BasketError(
                ErrorCode.INVALID_PAYLOAD,
                f"cannot average a {type(partial.value).__name__} partial result",
            )
        values.append(float(partial.value))

    paths = None
    if all(partial.paths is not None for partial in partials):
        paths = sum(partial.paths for partial in partials)

    # fsum raises on inf + -inf; plain addition yields NaN instead.
    total = math.fsum(values) if all(math.isfinite(v) for v in values) else sum(values)

    return AggregateResult(
        mode=mode,
        count=len(values),
        value=total / len(values),
        paths=paths,
    )


def _single_expected_result(handler: TaskHandler) -> ResultID:
    expected = list(handler.expected_results)
    if len(expected) != 1:
        raise BasketError(
            ErrorCode.INVALID_CONFIG,
            f"task must declare exactly one expected result, got {len(expected)}",
        )
    return expected[0]


class MonteCarloWorker(WorkerService):
    """Worker service running the Launch, MonteCarloWorker and Joiner use cases."""

    def process(self, handler: TaskHandler) -> Output:
        _trace_fn = TraceFn("process")
        scope = f"sessionId={handler.session_id}, taskId={handler.task_id}"

        try:
            use_case = UseCase.parse(handler.task_options.use_case)
        except BasketError as e:
            logger.error(f"[{scope}] {e.message}: {handler.task_options.use_case!r}")
            return Output.failure(e.message, e.code)

        logger.info(f"[{scope}] Executing use case {use_case.value}")

        try:
            if use_case is UseCase.LAUNCH:
                self._launch(handler)
            elif use_case is UseCase.WORKER:
                self._worker(handler)
            else:
                self._joiner(handler)
        except BasketError as e:
            logger.error(f"[{scope}] Error during task computing: {e.message}")
            return Output.failure(e.message, e.code)
        except Exception as e:
            logger.exception(f"[{scope}] Error during task computing.")
            return Output.failure(str(e), ErrorCode.INTERNAL)

        return Output.ok()

    def _launch(self, handler: TaskHandler) -> None:
        request = decode_request(handler.payload)
        output_id = _single_expected_result(handler)
        check_decomposition(request)

        logger.debug(f"Submitting {request.subtask_count} workers")
        prefix = uuid.uuid4()
        worker_ids = handler.create_result_ids([f"{prefix}_{i}" for i in range(1, request.subtask_count + 1)])

        workers, joiner = decompose(request, worker_ids, output_id, handler.task_options)

        logger.debug("Submitting joiner")
        handler.submit_tasks(workers + [joiner])

    def _worker(self, handler: TaskHandler) -> None:
        payload = decode_worker_payload(handler.payload)
        result_id = _single_expected_result(handler)
        request = payload.request

        source = NormalSource.for_unit(request.seed, payload.index)
        value = BasketSimulator(source).simulate(
            request.basket,
            request.risk_free_rate,
            request.time_horizon,
            payload.path_count,
        )

        logger.debug(f"Worker {payload.index} estimated {value} from {payload.path_count} paths")
        handler.send_result(result_id, encode_partial(PartialResult(value=value, paths=payload.path_count)))

    def _joiner(self, handler: TaskHandler) -> None:
        logger.debug("Starting joiner use case")
        payload = decode_joiner_payload(handler.payload)
        result_id = _single_expected_result(handler)

        ordered = order_dependencies(payload.dependencies, handler.data_dependencies)
        strict = payload.aggregation is Aggregation.MEAN
        partials = [decode_partial(data, strict=strict) for data in ordered]

        result = aggregate(partials, payload.aggregation)
        handler.send_result(result_id, encode_aggregate(result))

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

import argparse
import contextlib
import logging
import sys
from typing import Any, List, Optional, Sequence

import httpx
import yaml
from pydantic import ValidationError

from .codec import decode_aggregate, decode_partial, encode_request, encode_worker_payload
from .config import BasketContext
from .local import LocalPlatform
from .types import (
    Aggregation,
    AggregateResult,
    Asset,
    Basket,
    BasketError,
    ErrorCode,
    SimulationRequest,
    TaskCreation,
    TaskOptions,
    UseCase,
    WorkerPayload,
)
from .worker import MonteCarloWorker

logger = logging.getLogger(__name__)

DEFAULT_BASKET: Basket = (
    Asset(name="AAPL", spot=180.0, volatility=0.25, weight=0.4),
    Asset(name="MSFT", spot=350.0, volatility=0.20, weight=0.3),
    Asset(name="GOOGL", spot=140.0, volatility=0.28, weight=0.3),
)


class BasketClient:
    """Submits basket valuations to a task platform and collects their results."""

    def __init__(self, platform: LocalPlatform, timeout: Optional[float] = None, partition_id: Optional[str] = None):
        self._platform = platform
        self._timeout = timeout
        self._partition_id = partition_id

    def value(self, request: SimulationRequest) -> AggregateResult:
        """Run the request as a Launch unit fanning out to `subtask_count` workers."""
        payload = encode_request(request)
        data = self._submit_and_wait(UseCase.LAUNCH, payload)
        return decode_aggregate(data)

    def simulate(self, request: SimulationRequest) -> float:
        """Run the whole request in a single worker unit."""
        payload = encode_worker_payload(WorkerPayload(request=request, index=0, path_count=request.path_count))
        data = self._submit_and_wait(UseCase.WORKER, payload)
        return decode_partial(data).value

    def _submit_and_wait(self, use_case: UseCase, payload: bytes) -> bytes:
        options = TaskOptions.for_use_case(use_case, TaskOptions(partition_id=self._partition_id))
        session_id = self._platform.create_session(options)
        logger.info(f"sessionId: {session_id}")

        result_id = self._platform.create_results_metadata(session_id, ["Result"])[0]
        logger.info(f"resultId: {result_id}")

        task_id = self._platform.submit_tasks(session_id, [TaskCreation(payload=payload, expected_output_keys=[result_id])])[0]
        logger.info(f"Task id: {task_id}")

        self._platform.wait_for_results(session_id, [result_id], timeout=self._timeout)
        return self._platform.download_result(session_id, result_id)


@contextlib.contextmanager
def suppress_dependency_logs(level=logging.WARNING):
    """
    A context manager to temporarily suppress httpx and httpcore logs.
    """
    httpx_logger = logging.getLogger("httpx")
    httpcore_logger = logging.getLogger("httpcore")
    original_httpx_level = httpx_logger.level
    original_httpcore_level = httpcore_logger.level
    httpx_logger.setLevel(level)
    httpcore_logger.setLevel(level)
    try:
        yield
    finally:
        httpx_logger.setLevel(original_httpx_level)
        httpcore_logger.setLevel(original_httpcore_level)


class RemoteClient:
    """Client of a basketmc debug service."""

    def __init__(self, endpoint: str, timeout: Optional[float] = None):
        if not endpoint:
            raise BasketError(ErrorCode.INVALID_CONFIG, "endpoint cannot be empty")
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout

    def value(self, request: SimulationRequest) -> AggregateResult:
        return decode_aggregate(self._post("value", encode_request(request)))

    def simulate(self, request: SimulationRequest) -> float:
        return decode_partial(self._post("simulate", encode_request(request))).value

    def _post(self, route: str, payload: bytes) -> bytes:
        url = f"{self._endpoint}/{route}"
        try:
            with suppress_dependency_logs():
                response = httpx.post(
                    url,
                    content=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=self._timeout,
                )
        except httpx.HTTPError as e:
            raise BasketError(ErrorCode.INTERNAL, f"failed to reach {url}: {e}")

        if response.status_code in (400, 500) and response.headers.get("content-type") == "application/json":
            error = response.json()
            code = ErrorCode.__members__.get(error.get("code"), ErrorCode.INTERNAL)
            raise BasketError(code, error.get("message", response.text))
        if response.status_code != 200:
            raise BasketError(ErrorCode.INTERNAL, f"{url} returned HTTP {response.status_code}: {response.text}")

        return response.content


def value_basket(
    request: SimulationRequest,
    max_workers: int = 4,
    timeout: Optional[float] = None,
    partition_id: Optional[str] = None,
) -> AggregateResult:
    """Value `request` on a throwaway local platform."""
    with LocalPlatform(MonteCarloWorker(), max_workers=max_workers) as platform:
        return BasketClient(platform, timeout=timeout, partition_id=partition_id).value(request)


def load_basket(path: str) -> Basket:
    """Load a basket from a YAML or JSON file.

    The file holds either a list of assets or a mapping with a `basket` list.
    """
    try:
        with open(path, "r") as f:
            data: Any = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise BasketError(ErrorCode.INVALID_CONFIG, f"failed to read basket file {path}: {e}")

    if isinstance(data, dict):
        data = data.get("basket")
    if not isinstance(data, list) or not data:
        raise BasketError(ErrorCode.INVALID_CONFIG, f"basket file {path} must contain a non-empty list of assets")

    try:
        return tuple(Asset.model_validate(asset) for asset in data)
    except ValidationError as e:
        raise BasketError(ErrorCode.INVALID_CONFIG, f"invalid asset in {path}: {e}")


def _build_parser(context: BasketContext) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="basketmc",
        description="Monte Carlo basket valuation. A Launch task splits the simulation into "
        "worker subtasks whose results are combined by a Joiner task.",
    )
    parser.add_argument("--numpaths", type=int, default=context.path_count, help="Number of paths for simulation.")
    parser.add_argument("--subtasks", type=int, default=context.subtask_count, help="Number of worker subtasks.")
    parser.add_argument("--rate", type=float, default=context.risk_free_rate, help="Risk-free rate.")
    parser.add_argument("--horizon", type=float, default=context.time_horizon, help="Time horizon in years.")
    parser.add_argument(
        "--aggregation",
        choices=[a.value for a in Aggregation],
        default=context.aggregation.value,
        help="How the joiner combines the worker results.",
    )
    parser.add_argument("--basket", type=str, default=None, help="YAML/JSON file with the basket assets.")
    parser.add_argument("--seed", type=int, default=None, help="Base seed for reproducible runs.")
    parser.add_argument("--partition", type=str, default=None, help="Partition the tasks are submitted to.")
    parser.add_argument("--single", action="store_true", help="Run the simulation in a single worker task.")
    parser.add_argument("--endpoint", type=str, default=None, help="Endpoint of a basketmc debug service.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    try:
        context = BasketContext.load()
        context.apply_log_level()
        args = _build_parser(context).parse_args(argv)

        basket: Sequence[Asset] = load_basket(args.basket) if args.basket else DEFAULT_BASKET
        try:
            request = SimulationRequest(
                basket=tuple(basket),
                risk_free_rate=args.rate,
                time_horizon=args.horizon,
                path_count=args.numpaths,
                subtask_count=1 if args.single else args.subtasks,
                aggregation=Aggregation(args.aggregation),
                seed=args.seed,
            )
        except ValidationError as e:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"invalid simulation parameters: {e}")

        print("=" * 60)
        print("Monte Carlo basket valuation")
        print("=" * 60)
        print(f"  Assets:   {', '.join(asset.name for asset in request.basket)}")
        print(f"  Paths:    {request.path_count:,}")
        print(f"  Subtasks: {request.subtask_count}")

        if args.endpoint:
            client = RemoteClient(args.endpoint, timeout=context.timeout)
            result = client.simulate(request) if args.single else client.value(request)
        elif args.single:
            with LocalPlatform(MonteCarloWorker(), max_workers=context.max_workers) as platform:
                client = BasketClient(platform, timeout=context.timeout, partition_id=args.partition)
                result = client.simulate(request)
        else:
            result = value_basket(
                request,
                max_workers=context.max_workers,
                timeout=context.timeout,
                partition_id=args.partition,
            )
    except BasketError as e:
        print(f"Error ({e.code.name}): {e.message}", file=sys.stderr)
        return 1

    print("\nResults:")
    if isinstance(result, AggregateResult) and result.mode is Aggregation.VECTOR:
        for index, value in enumerate(result.values):
            print(f"  Worker {index}: {value}")
    else:
        value = result.value if isinstance(result, AggregateResult) else result
        print(f"  Basket value:     {value:.6f}")
        print(f"  Closed-form:      {request.closed_form_value():.6f}")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())

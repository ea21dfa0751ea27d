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
import os

if os.getenv("BASKETMC_LOG_LEVEL", "INFO") == "DEBUG":
    logging.basicConfig(level=logging.DEBUG, filename="basketmc.log")
else:
    logging.basicConfig(level=logging.INFO, filename="basketmc.log")

from .types import (
    # Type aliases
    ResultID,
    TaskID,
    SessionID,
    Basket,
    # Enums
    ErrorCode,
    UseCase,
    Aggregation,
    # Classes
    BasketError,
    Asset,
    SimulationRequest,
    WorkerPayload,
    JoinerPayload,
    PartialResult,
    AggregateResult,
    TaskOptions,
    TaskCreation,
    Output,
)

from .rng import NormalSource
from .pricer import terminal_price, basket_path_value, discount_factor
from .engine import BasketSimulator, simulate
from .codec import (
    encode_request,
    decode_request,
    encode_partial,
    decode_partial,
    encode_aggregate,
    decode_aggregate,
)
from .handler import TaskHandler, WorkerService
from .worker import MonteCarloWorker, decompose, aggregate, apportion_paths, order_dependencies
from .local import LocalPlatform, TaskState, ResultState
from .config import BasketContext
from .client import BasketClient, RemoteClient, value_basket, DEFAULT_BASKET

__version__ = "0.1.0"

__all__ = [
    # Type aliases
    "ResultID",
    "TaskID",
    "SessionID",
    "Basket",
    # Enums
    "ErrorCode",
    "UseCase",
    "Aggregation",
    "TaskState",
    "ResultState",
    # Classes
    "BasketError",
    "Asset",
    "SimulationRequest",
    "WorkerPayload",
    "JoinerPayload",
    "PartialResult",
    "AggregateResult",
    "TaskOptions",
    "TaskCreation",
    "Output",
    # Simulation
    "NormalSource",
    "terminal_price",
    "basket_path_value",
    "discount_factor",
    "BasketSimulator",
    "simulate",
    # Codec
    "encode_request",
    "decode_request",
    "encode_partial",
    "decode_partial",
    "encode_aggregate",
    "decode_aggregate",
    # Worker service
    "TaskHandler",
    "WorkerService",
    "MonteCarloWorker",
    "decompose",
    "aggregate",
    "apportion_paths",
    "order_dependencies",
    # Platform and client
    "LocalPlatform",
    "BasketContext",
    "BasketClient",
    "RemoteClient",
    "value_basket",
    "DEFAULT_BASKET",
]

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
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

from .types import Aggregation, BasketError, ErrorCode

logger = logging.getLogger(__name__)

DEFAULT_BASKETMC_CONF = os.path.join(os.path.expanduser("~"), ".flame", "basketmc.yaml")
BASKETMC_CONF = "BASKETMC_CONF"
BASKETMC_LOG_LEVEL = "BASKETMC_LOG_LEVEL"
BASKETMC_MAX_WORKERS = "BASKETMC_MAX_WORKERS"

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


@dataclass
class BasketContext:
    """Settings of the basket valuation tools.

    Loaded from a YAML file shaped as:

        log_level: INFO
        cluster:
          max_workers: 4
          timeout: 300
        simulation:
          path_count: 10000
          subtask_count: 10
          risk_free_rate: 0.05
          time_horizon: 1.0
          aggregation: mean
        debug:
          host: 0.0.0.0
          port: 5050
    """

    log_level: str = "INFO"
    max_workers: int = 4
    timeout: Optional[float] = None
    path_count: int = 10000
    subtask_count: int = 10
    risk_free_rate: float = 0.05
    time_horizon: float = 1.0
    aggregation: Aggregation = Aggregation.MEAN
    debug_host: str = "0.0.0.0"
    debug_port: int = 5050

    def __post_init__(self) -> None:
        """Validate BasketContext fields."""
        self.log_level = str(self.log_level).upper()
        if self.log_level not in LOG_LEVELS:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"unknown log level: {self.log_level!r}")

        try:
            self.aggregation = Aggregation(self.aggregation)
        except ValueError:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"unknown aggregation: {self.aggregation!r}")

        if self.max_workers < 1:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"max_workers must be positive, got {self.max_workers}")
        if self.timeout is not None and self.timeout <= 0:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"timeout must be positive, got {self.timeout}")
        if self.path_count < 1:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"path_count must be positive, got {self.path_count}")
        if self.subtask_count < 1:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"subtask_count must be positive, got {self.subtask_count}")
        if self.time_horizon <= 0:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"time_horizon must be positive, got {self.time_horizon}")
        if not 0 < self.debug_port < 65536:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"invalid debug port {self.debug_port}")

    @classmethod
    def load(cls, path: Optional[str] = None) -> "BasketContext":
        """Load the context from `path`, $BASKETMC_CONF or the default location.

        A missing file yields the defaults; environment variables override the file.

        Raises:
            BasketError: INVALID_CONFIG if the file or a value is invalid
        """
        path = path or os.getenv(BASKETMC_CONF, DEFAULT_BASKETMC_CONF)

        data: Dict[str, Any] = {}
        if os.path.exists(path):
            logger.debug(f"Loading basketmc configuration from {path}")
            try:
                with open(path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise BasketError(ErrorCode.INVALID_CONFIG, f"invalid configuration file {path}: {e}")
            if not isinstance(data, dict):
                raise BasketError(ErrorCode.INVALID_CONFIG, f"configuration file {path} must contain a mapping")

        cluster = _section(data, "cluster")
        simulation = _section(data, "simulation")
        debug = _section(data, "debug")

        kwargs: Dict[str, Any] = {}
        _set(kwargs, "log_level", data.get("log_level"), str)
        _set(kwargs, "max_workers", cluster.get("max_workers"), int)
        _set(kwargs, "timeout", cluster.get("timeout"), float)
        _set(kwargs, "path_count", simulation.get("path_count"), int)
        _set(kwargs, "subtask_count", simulation.get("subtask_count"), int)
        _set(kwargs, "risk_free_rate", simulation.get("risk_free_rate"), float)
        _set(kwargs, "time_horizon", simulation.get("time_horizon"), float)
        _set(kwargs, "aggregation", simulation.get("aggregation"), str)
        _set(kwargs, "debug_host", debug.get("host"), str)
        _set(kwargs, "debug_port", debug.get("port"), int)

        _set(kwargs, "log_level", os.getenv(BASKETMC_LOG_LEVEL), str)
        _set(kwargs, "max_workers", os.getenv(BASKETMC_MAX_WORKERS), int)

        return cls(**kwargs)

    def apply_log_level(self) -> None:
        """Set the level of the basketmc loggers to `log_level`."""
        logging.getLogger("basketmc").setLevel(self.log_level)


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise BasketError(ErrorCode.INVALID_CONFIG, f"configuration section '{name}' must be a mapping")
    return section


def _set(kwargs: Dict[str, Any], key: str, value: Any, kind: type) -> None:
    if value is None:
        return
    try:
        kwargs[key] = kind(value)
    except (TypeError, ValueError):
        raise BasketError(ErrorCode.INVALID_CONFIG, f"invalid value for {key}: {value!r}")

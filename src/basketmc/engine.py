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
from typing import Optional, Sequence

from .pricer import basket_path_value, discount_factor
from .rng import NormalSource
from .types import Asset, BasketError, ErrorCode

logger = logging.getLogger(__name__)


class BasketSimulator:
    """Monte Carlo estimator of the discounted value of a basket."""

    def __init__(self, source: Optional[NormalSource] = None):
        self._source = source if source is not None else NormalSource()

    def simulate(
        self,
        basket: Sequence[Asset],
        risk_free_rate: float,
        time_horizon: float,
        path_count: int,
    ) -> float:
        """
        Estimate the present value of the basket from `path_count` paths.

        Args:
            basket: Assets to value
            risk_free_rate: Continuously compounded annual rate
            time_horizon: Horizon in years
            path_count: Number of independent paths

        Returns:
            exp(-r * T) times the mean undiscounted basket value over all paths

        Raises:
            BasketError: If path_count is not positive
        """
        if path_count < 1:
            raise BasketError(ErrorCode.INVALID_CONFIG, f"path count must be positive, got {path_count}")

        total = 0.0
        for _ in range(path_count):
            total += basket_path_value(basket, risk_free_rate, time_horizon, self._source.next)

        value = discount_factor(risk_free_rate, time_horizon) * (total / path_count)
        logger.debug(f"Simulated {path_count} paths over {len(basket)} assets: {value}")
        return value


def simulate(
    basket: Sequence[Asset],
    risk_free_rate: float,
    time_horizon: float,
    path_count: int,
    source: Optional[NormalSource] = None,
) -> float:
    """Shortcut for `BasketSimulator(source).simulate(...)`."""
    return BasketSimulator(source).simulate(basket, risk_free_rate, time_horizon, path_count)

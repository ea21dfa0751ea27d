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
from typing import Callable, Sequence

from .types import Asset


def _exp(x: float) -> float:
    # math.exp raises on overflow; saturate to inf as IEEE-754 does.
    try:
        return math.exp(x)
    except OverflowError:
        return math.inf


def terminal_price(asset: Asset, risk_free_rate: float, time_horizon: float, z: float) -> float:
    """
    Price of `asset` at `time_horizon` under risk-neutral geometric Brownian motion.

    Args:
        asset: The asset to price
        risk_free_rate: Continuously compounded annual rate
        time_horizon: Horizon in years
        z: A standard normal draw

    Returns:
        S0 * exp((r - sigma^2 / 2) * T + sigma * sqrt(T) * z)
    """
    sigma = asset.volatility
    drift = (risk_free_rate - 0.5 * sigma * sigma) * time_horizon
    diffusion = sigma * math.sqrt(time_horizon) * z
    return asset.spot * _exp(drift + diffusion)


def basket_path_value(
    basket: Sequence[Asset],
    risk_free_rate: float,
    time_horizon: float,
    draw: Callable[[], float],
) -> float:
    """Undiscounted weighted value of the basket along one simulated path.

    Every asset gets its own draw, taken in basket order.
    """
    total = 0.0
    for asset in basket:
        total += asset.weight * terminal_price(asset, risk_free_rate, time_horizon, draw())
    return total


def discount_factor(risk_free_rate: float, time_horizon: float) -> float:
    return _exp(-risk_free_rate * time_horizon)

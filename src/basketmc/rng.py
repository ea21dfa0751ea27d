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
import random
from typing import Optional, Union


class NormalSource:
    """Standard normal deviates from the Box-Muller transform.

    Each unit of work owns one source, created when the unit starts and passed
    explicitly down the simulation call chain. The transform yields two
    deviates per pair of uniforms; the second one is kept and returned by the
    following call.
    """

    def __init__(self, seed: Optional[Union[int, str]] = None, rng: Optional[random.Random] = None):
        """
        Args:
            seed: Seed of a private generator. None seeds from the OS entropy pool.
            rng: Generator to draw uniforms from; takes precedence over `seed`.
        """
        self._rng = rng if rng is not None else random.Random(seed)
        self._spare: Optional[float] = None

    @classmethod
    def for_unit(cls, seed: Optional[int], index: int) -> "NormalSource":
        """Create the source of the `index`-th worker of a decomposed request."""
        if seed is None:
            return cls()
        return cls(seed=f"{seed}:{index}")

    def uniform(self) -> float:
        """Uniform draw over (0, 1]."""
        return 1.0 - self._rng.random()

    def next(self) -> float:
        if self._spare is not None:
            z, self._spare = self._spare, None
            return z

        u1 = self.uniform()
        u2 = self.uniform()
        radius = math.sqrt(-2.0 * math.log(u1))
        theta = 2.0 * math.pi * u2
        self._spare = radius * math.sin(theta)
        return radius * math.cos(theta)

    def __call__(self) -> float:
        return self.next()

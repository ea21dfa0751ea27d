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

from basketmc.rng import NormalSource


class StubRandom(random.Random):
    """Random generator replaying fixed values from random()."""

    def __init__(self, values):
        super().__init__(0)
        self._values = list(values)

    def random(self):
        return self._values.pop(0)


def test_uniform_excludes_zero():
    """A raw draw of 0.0 maps to 1.0, keeping ln(u1) finite."""
    source = NormalSource(rng=StubRandom([0.0]))
    assert source.uniform() == 1.0


def test_box_muller_pair_is_cached():
    """The paired deviate is returned by the next call without new uniforms."""
    # u1 = 0.5, u2 = 0.25
    source = NormalSource(rng=StubRandom([0.5, 0.75]))

    radius = math.sqrt(-2.0 * math.log(0.5))
    assert abs(source.next()) < 1e-12
    assert source.next() == radius


def test_seeded_sources_are_reproducible():
    a = NormalSource(seed=42)
    b = NormalSource(seed=42)
    assert [a.next() for _ in range(10)] == [b.next() for _ in range(10)]


def test_unit_sources_are_independent():
    """Workers of the same request draw different streams."""
    first = NormalSource.for_unit(7, 0)
    second = NormalSource.for_unit(7, 1)
    assert [first() for _ in range(5)] != [second() for _ in range(5)]

    again = NormalSource.for_unit(7, 1)
    replay = NormalSource.for_unit(7, 1)
    assert [again() for _ in range(5)] == [replay() for _ in range(5)]


def test_unseeded_unit_source():
    source = NormalSource.for_unit(None, 3)
    assert math.isfinite(source.next())


def test_standard_normal_moments():
    source = NormalSource(seed=2025)
    draws = [source.next() for _ in range(20000)]

    mean = sum(draws) / len(draws)
    variance = sum((d - mean) ** 2 for d in draws) / (len(draws) - 1)

    assert abs(mean) < 0.05
    assert abs(variance - 1.0) < 0.05

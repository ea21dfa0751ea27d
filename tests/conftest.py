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

import pytest

from basketmc.local import LocalPlatform
from basketmc.worker import MonteCarloWorker


@pytest.fixture
def platform():
    """Local platform running the Monte Carlo worker service."""
    platform = LocalPlatform(MonteCarloWorker(), max_workers=4)

    yield platform

    platform.close()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the configuration at a missing file and clear overrides."""
    monkeypatch.setenv("BASKETMC_CONF", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("BASKETMC_LOG_LEVEL", raising=False)
    monkeypatch.delenv("BASKETMC_MAX_WORKERS", raising=False)


@pytest.fixture(autouse=True)
def restore_log_level():
    """Undo log level changes made by the code under test."""
    logger = logging.getLogger("basketmc")
    level = logger.level

    yield

    logger.setLevel(level)

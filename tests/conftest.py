import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from admission_scheduler import AdmissionScheduler, ModelQuotaConfig, SchedulerConfig


class FakeClock:
    """Wall clock that only moves when a test advances it."""

    def __init__(self, start: float):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc).timestamp())


@pytest.fixture
def make_scheduler(clock: FakeClock):
    def factory(*models: ModelQuotaConfig, **policy) -> AdmissionScheduler:
        config = SchedulerConfig(models=list(models), **policy)
        return AdmissionScheduler(config, clock=clock)

    return factory

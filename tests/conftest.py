from datetime import datetime, timedelta, timezone

import pytest

from services.age_gate import AgeThresholds
from services.consent import ConsentRecordManager
from services.onboarding import OnboardingService
from services.storage import SqliteOnboardingStore


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw) -> None:
        self.now = self.now + timedelta(**kw)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(tmp_path):
    return SqliteOnboardingStore(tmp_path / "onboarding.db")


@pytest.fixture
def manager():
    return ConsentRecordManager(policy_version="v1", validity=timedelta(days=365))


@pytest.fixture
def service(store, manager, clock):
    return OnboardingService(store, manager, AgeThresholds(), clock=clock)

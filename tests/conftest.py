import datetime
import random

import pytest
import pytz

from tests.fakes import FakeFirestore, FakeRtdb

JST = pytz.timezone("Asia/Tokyo")

# 2024-05-15 (水) 12:00 JST
NOW = JST.localize(datetime.datetime(2024, 5, 15, 12, 0, 0))
NOW_MS = int(NOW.timestamp() * 1000)


class ManualClock:
    """テストから進められる時計（エポックミリ秒）"""

    def __init__(self, now_ms=NOW_MS):
        self.now_ms = now_ms

    def __call__(self):
        return self.now_ms

    def advance(self, ms):
        self.now_ms += ms


@pytest.fixture
def firestore_db():
    return FakeFirestore()


@pytest.fixture
def rtdb():
    return FakeRtdb()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def fake_manager(firestore_db, rtdb):
    class Manager:
        db = firestore_db

        def test_connection(self):
            return True

    manager = Manager()
    manager.rtdb = rtdb
    return manager

from datetime import datetime, timedelta, timezone

import pytest

from models import Track


def make_track(i, **overrides):
    data = dict(
        id=f"track-{i}",
        title=f"Track {i}",
        description=f"Description {i}",
        type="generated",
        genre="house",
        mood="calm",
        bpm=120,
        duration=180,
        date_created=datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(hours=i),
        audio_url=f"https://cdn.example.com/{i}.mp3",
        quality_score=80,
    )
    data.update(overrides)
    return Track(**data)


class FakeGenerator:
    def __init__(self, tracks=None, single=None):
        self.tracks = tracks if tracks is not None else [make_track(i) for i in range(16)]
        self.single = single or {}
        self.batch_calls = 0
        self.fetch_calls = []
        self.fail_batch = None
        self.fail_fetch = None

    async def generate_batch(self, count):
        self.batch_calls += 1
        if self.fail_batch:
            raise self.fail_batch
        return self.tracks[:count]

    async def fetch_one(self, track_id):
        self.fetch_calls.append(track_id)
        if self.fail_fetch:
            raise self.fail_fetch
        return self.single.get(track_id)


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, delay):
        self.calls.append(delay)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorded_sleep():
    return RecordingSleep()

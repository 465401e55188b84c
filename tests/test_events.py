import json

import pytest
import redis

from examcore.core import cache
from examcore.core.config import settings
from examcore.services import answers, sessions


class FakeRedis:
    def __init__(self):
        self.counters = {}
        self.published = []

    def incr(self, key):
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        return 1


class BrokenRedis:
    def incr(self, key):
        raise redis.ConnectionError("connection refused")


@pytest.fixture
def feed(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(settings, "EVENTS_ENABLED", True)
    monkeypatch.setattr(cache, "redis_client", fake)
    return fake


def test_disabled_feed_publishes_nothing(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(cache, "redis_client", fake)
    assert cache.publish_change("answer_saved", "exam-1") is None
    assert fake.published == []


def test_sequence_numbers_increase_per_exam(feed):
    assert cache.publish_change("answer_saved", "exam-1", session_id="s1") == 1
    assert cache.publish_change("answer_saved", "exam-1", session_id="s1") == 2
    assert cache.publish_change("answer_saved", "exam-2") == 1
    channel, message = feed.published[1]
    assert channel == cache.feed_channel("exam-1")
    assert message == {"seq": 2, "type": "answer_saved", "exam_id": "exam-1", "session_id": "s1"}


def test_publish_failure_is_swallowed(monkeypatch):
    monkeypatch.setattr(settings, "EVENTS_ENABLED", True)
    monkeypatch.setattr(cache, "redis_client", BrokenRedis())
    assert cache.publish_change("answer_saved", "exam-1") is None


def test_mutations_emit_events(db, factory, feed):
    mc = factory.question()
    exam = factory.active_exam([mc])
    s = sessions.join(db, exam.id, "Ada", "ada@example.com")
    saved = answers.save_answer(db, s.id, mc.id, {"selected_option_id": "a"})
    answers.award_points(db, saved.id, 1)
    sessions.submit(db, s.id)
    types = [m["type"] for _, m in feed.published]
    assert types == ["session_joined", "answer_saved", "points_awarded", "session_submitted"]
    assert [m["seq"] for _, m in feed.published] == [1, 2, 3, 4]

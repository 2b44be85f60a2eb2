"""Tests for the stats rollup, emotion breakdown and recent-activity feed."""

import pytest

from conftest import NOW, TOKYO_DAY
from presence_engine.models import UNKNOWN_USER, PostKind, PostRecord, Profile
from presence_engine.stats import emotion_breakdown, recent_activity, rollup_stats

HOUR = 60 * 60 * 1000


def post(post_id, created_at, **kwargs):
    return PostRecord(id=post_id, kind=PostKind.POST, created_at=created_at, **kwargs)


def emotion(post_id, created_at, feeling=None, **kwargs):
    return PostRecord(id=post_id, kind=PostKind.EMOTION, created_at=created_at, emotion=feeling, **kwargs)


class TestRollupStats:

    def test_counts(self, make_presence, tokyo):
        presences = [
            make_presence("a", NOW),
            make_presence("a", NOW - HOUR),
            make_presence("b", NOW - 2 * HOUR, active=False),
            make_presence("c", TOKYO_DAY[0] - 1),
        ]
        posts = [post("p1", NOW), post("p2", TOKYO_DAY[0] - HOUR), post("p3", None)]
        emotion_posts = [emotion("e1", TOKYO_DAY[1]), emotion("e2", TOKYO_DAY[1] + 1)]
        profiles = [
            Profile(id="u1", created_at=NOW - HOUR, received_likes=3, followers_count=1),
            Profile(id="u2", created_at=None, received_likes=2, followers_count=4),
            Profile(id="u3", created_at=TOKYO_DAY[0] - 1),
        ]

        stats = rollup_stats(presences, posts, emotion_posts, profiles, NOW, tokyo)

        assert stats.encounters_today == 2
        assert stats.posts_today == 1
        assert stats.emotion_posts_today == 1
        assert stats.total_users == 3
        assert stats.new_users_today == 1
        assert stats.total_posts == 3
        assert stats.total_emotion_posts == 2
        assert stats.total_likes == 5
        assert stats.total_followers == 5

    def test_today_follows_the_timezone(self, tokyo):
        # 00:30 on Jan 1 in Tokyo is still Dec 31 in UTC.
        early_tokyo = TOKYO_DAY[0] + 30 * 60 * 1000
        posts = [post("p1", early_tokyo)]

        assert rollup_stats([], posts, [], [], NOW, tokyo).posts_today == 1
        assert rollup_stats([], posts, [], [], NOW).posts_today == 0

    def test_empty_inputs(self, tokyo):
        stats = rollup_stats([], [], [], [], NOW, tokyo)
        assert stats.encounters_today == 0
        assert stats.total_users == 0
        assert stats.total_likes == 0
        assert stats.new_users_today == 0


class TestEmotionBreakdown:

    def test_shares_sorted_by_count_then_name(self):
        posts = [
            emotion("1", NOW, "happy"),
            emotion("2", NOW, "happy"),
            emotion("3", NOW, "sad"),
            emotion("4", NOW, None),
        ]
        breakdown = emotion_breakdown(posts)

        assert [(s.emotion, s.count) for s in breakdown] == [("happy", 2), ("sad", 1), ("unknown", 1)]
        assert breakdown[0].percentage == pytest.approx(50.0)
        assert sum(s.percentage for s in breakdown) == pytest.approx(100.0)

    def test_no_posts(self):
        assert emotion_breakdown([]) == []


class TestRecentActivity:

    def test_merged_and_sorted(self):
        posts = [
            post("p1", NOW - HOUR, text="hello", author_id="u1", author_name="Aki"),
            post("p2", None, text="lost"),
            post("p3", NOW - 3 * HOUR),
        ]
        emotion_posts = [
            emotion("e1", NOW, "happy", text="yay"),
            emotion("e2", NOW - 2 * HOUR, "bored"),
        ]

        feed = recent_activity(posts, emotion_posts)

        assert [a.id for a in feed] == ["e1", "p1", "e2", "p3"]
        assert feed[0].title == "😊 Happy"
        assert feed[0].description == "yay"
        assert feed[1].title == "New post"
        assert feed[1].user_name == "Aki"
        assert feed[2].title == "Emotion post"
        assert feed[2].description == "Emotion"
        assert feed[3].description == "Untitled"
        assert feed[3].user_name == UNKNOWN_USER

    def test_limit(self):
        posts = [post(f"p{i}", NOW - i) for i in range(30)]
        feed = recent_activity(posts, [], limit=5)
        assert [a.id for a in feed] == ["p0", "p1", "p2", "p3", "p4"]

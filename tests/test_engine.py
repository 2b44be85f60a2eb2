"""Tests for the derivation engine and its configuration."""

import pytest

from conftest import NOW, TOKYO_DAY
from presence_engine.engine import DEFAULT_CONFIG, PresenceEngine, load_config
from presence_engine.models import ActivityRange
from presence_engine.snapshot import InMemorySnapshotProvider


@pytest.fixture
def engine(provider):
    return PresenceEngine(provider)


class TestDerive:

    def test_day_window_uses_configured_timezone(self, engine):
        result = engine.derive(NOW)
        assert result.day == TOKYO_DAY
        assert result.activity_range is ActivityRange.LAST_24_HOURS

    def test_liveness(self, engine):
        liveness = engine.derive(NOW).liveness
        assert liveness.available
        assert [r.id for r in liveness.value.online] == ["p1", "p2"]
        assert liveness.value.offline_count == 2

    def test_encounters(self, engine):
        encounters = engine.derive(NOW).encounters.value
        assert [e.id for e in encounters] == ["p1_p2"]
        assert encounters[0].distance_m == pytest.approx(50.0, abs=1e-6)
        assert encounters[0].occurred_at == NOW - 60_000

    def test_stats(self, engine):
        stats = engine.derive(NOW).stats.value
        assert stats.encounters_today == 4
        assert stats.posts_today == 1
        assert stats.emotion_posts_today == 2
        assert stats.total_users == 2
        assert stats.new_users_today == 1
        assert stats.total_posts == 3
        assert stats.total_emotion_posts == 2
        assert stats.total_likes == 8
        assert stats.total_followers == 6

    def test_activity_buckets(self, engine):
        buckets = engine.derive(NOW).activity.value
        assert len(buckets) == 24
        assert buckets[23].counts == {"posts": 1, "emotion_posts": 1, "new_users": 0, "online": 3}
        assert buckets[22].counts["new_users"] == 1
        assert buckets[21].counts["online"] == 1
        assert buckets[20].counts["emotion_posts"] == 1
        assert buckets[23].end_ms == NOW

    def test_activity_range_override(self, engine):
        result = engine.derive(NOW, "7d")
        assert result.activity_range is ActivityRange.LAST_7_DAYS
        assert len(result.activity.value) == 7
        assert sum(b.counts["posts"] for b in result.activity.value) == 2

    def test_emotions_and_recent(self, engine):
        result = engine.derive(NOW)
        assert [(s.emotion, s.count) for s in result.emotions.value] == [("happy", 1), ("sad", 1)]
        assert [a.id for a in result.recent.value] == ["e1", "post1", "e2", "post2"]

    def test_dropped_records_reported(self, engine):
        dropped = engine.derive(NOW).dropped
        assert {k: v for k, v in dropped.items() if v} == {"streetpass_presences": 1}
        assert dropped["timelinePosts"] == 0
        assert dropped["profiles"] == 0

    def test_dropped_records_reported_for_every_dataset(self, raw_datasets, tokyo):
        raw_datasets["timelinePosts"].append({"caption": "no id"})
        raw_datasets["emotion_map_posts"].append({"emotion": "happy", "createdAt": NOW})
        engine = PresenceEngine(InMemorySnapshotProvider(raw_datasets, tokyo))

        dropped = engine.derive(NOW).dropped

        assert dropped["streetpass_presences"] == 1
        assert dropped["timelinePosts"] == 1
        assert dropped["emotion_map_posts"] == 1

    def test_users_without_online_presence(self, engine):
        users = engine.derive(NOW).users
        assert users.available
        assert [(u.id, u.display_name, u.online) for u in users.value] == [
            ("u1", "Aki", False),
            ("u2", "Ren", False),
        ]

    def test_users_online_first(self, raw_datasets, tokyo):
        raw_datasets["profiles"]["p2"] = {"displayName": "Ren (profile)"}
        engine = PresenceEngine(InMemorySnapshotProvider(raw_datasets, tokyo))

        users = engine.derive(NOW).users.value

        assert [u.id for u in users] == ["p2", "u1", "u2"]
        assert users[0].online
        assert users[0].display_name == "Ren"
        assert users[0].last_updated == NOW - 2 * 60_000
        assert users[0].color_value == 4280391411

    def test_users_unavailable_without_profiles(self, raw_datasets, tokyo):
        raw_datasets["profiles"] = RuntimeError("backend down")
        engine = PresenceEngine(InMemorySnapshotProvider(raw_datasets, tokyo))

        result = engine.derive(NOW)

        assert not result.users.available
        assert "profiles" in result.users.unavailable_reason
        assert result.liveness.available

    def test_failed_dataset_marks_dependent_views_unavailable(self, raw_datasets, tokyo):
        raw_datasets["timelinePosts"] = RuntimeError("backend down")
        engine = PresenceEngine(InMemorySnapshotProvider(raw_datasets, tokyo))

        result = engine.derive(NOW)

        for name in ("stats", "recent", "activity"):
            derived = getattr(result, name)
            assert not derived.available
            assert derived.value is None
            assert "timelinePosts" in derived.unavailable_reason
        assert result.liveness.available
        assert result.encounters.available
        assert result.emotions.available

    def test_missing_dataset(self, provider):
        engine = PresenceEngine(provider, {"datasets": {"presences": "nowhere"}})
        result = engine.derive(NOW)
        assert not result.liveness.available
        assert "unknown dataset" in result.liveness.unavailable_reason
        assert result.emotions.available


class TestSingleViews:

    def test_online_now(self, engine):
        derived = engine.online_now(NOW)
        assert derived.available
        assert derived.value.online_count == 2

    def test_encounters_on(self, engine):
        derived = engine.encounters_on(NOW)
        assert [e.id for e in derived.value] == ["p1_p2"]

    def test_single_view_failure(self, tokyo):
        engine = PresenceEngine(InMemorySnapshotProvider({}, tokyo))
        assert not engine.online_now(NOW).available
        assert not engine.encounters_on(NOW).available


class TestConfig:

    @pytest.mark.parametrize("override", [
        {"timezone": "Mars/Olympus_Mons"},
        {"liveness": {"timeout_minutes": 0}},
        {"encounters": {"time_window_minutes": -5}},
        {"encounters": {"distance_meters": 0}},
        {"activity": {"default_range": "1y"}},
    ])
    def test_invalid_settings_rejected(self, provider, override):
        with pytest.raises(ValueError):
            PresenceEngine(provider, override)

    def test_thresholds_from_config(self, provider):
        engine = PresenceEngine(provider, {
            "liveness": {"timeout_minutes": 10},
            "encounters": {"time_window_minutes": 2.5, "distance_meters": 30},
        })
        assert engine.timeout_ms == 600_000
        assert engine.time_window_ms == 150_000
        assert engine.distance_threshold_m == 30.0

    def test_defaults(self):
        config = load_config()
        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_yaml_merged_over_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("timezone: UTC\nencounters:\n  distance_meters: 250\n", encoding="utf-8")

        config = load_config(str(path))

        assert config["timezone"] == "UTC"
        assert config["encounters"]["distance_meters"] == 250
        assert config["encounters"]["time_window_minutes"] == 5
        assert config["liveness"]["timeout_minutes"] == 5

    def test_yaml_must_be_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(str(path))

    def test_from_config_file(self, provider, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("timezone: UTC\n", encoding="utf-8")
        engine = PresenceEngine.from_config_file(provider, str(path))
        assert engine.config["timezone"] == "UTC"
        assert engine.derive(NOW).day == (1_704_067_200_000, 1_704_153_599_999)

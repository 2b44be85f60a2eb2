"""Tests for online/offline classification."""

from presence_engine.liveness import DEFAULT_TIMEOUT_MS, classify_liveness, is_online, user_directory
from presence_engine.models import UNKNOWN_USER, DirectoryEntry, Profile

NOW = 1_704_078_000_000


class TestIsOnline:

    def test_inactive_record_is_offline_even_when_fresh(self, make_presence):
        record = make_presence("a", timestamp=NOW - 10_000, active=False)
        assert is_online(record, NOW) is False

    def test_fresh_active_record_is_online(self, make_presence):
        assert is_online(make_presence("a", timestamp=NOW - 10_000), NOW) is True

    def test_timeout_boundary_is_inclusive(self, make_presence):
        assert is_online(make_presence("a", timestamp=NOW - DEFAULT_TIMEOUT_MS), NOW) is True
        assert is_online(make_presence("a", timestamp=NOW - DEFAULT_TIMEOUT_MS - 1), NOW) is False

    def test_future_timestamp_counts_as_zero_elapsed(self, make_presence):
        record = make_presence("a", timestamp=NOW + 60 * 60 * 1000)
        assert is_online(record, NOW) is True

    def test_custom_timeout(self, make_presence):
        record = make_presence("a", timestamp=NOW - 90_000)
        assert is_online(record, NOW, timeout=60_000) is False
        assert is_online(record, NOW, timeout=120_000) is True

    def test_monotonic_in_now(self, make_presence):
        """Once offline at some instant, a record stays offline later on."""
        record = make_presence("a", timestamp=NOW)
        states = [is_online(record, NOW + step * 30_000) for step in range(20)]
        first_offline = states.index(False)
        assert not any(states[first_offline:])


class TestClassifyLiveness:

    def test_split_and_order(self, make_presence):
        records = [
            make_presence("b", timestamp=NOW - 60_000),
            make_presence("a", timestamp=NOW - 60_000),
            make_presence("c", timestamp=NOW - 1_000),
            make_presence("stale", timestamp=NOW - 10 * 60_000),
            make_presence("gone", timestamp=NOW, active=False),
        ]
        result = classify_liveness(records, NOW)

        assert [r.id for r in result.online] == ["c", "a", "b"]
        assert result.online_count == 3
        assert result.offline_count == 2

    def test_empty_snapshot(self):
        result = classify_liveness([], NOW)
        assert result.online == []
        assert result.offline_count == 0


class TestUserDirectory:

    def test_online_first_then_offline_by_name(self, make_presence):
        records = [
            make_presence("u3", timestamp=NOW - 30_000, location=(35.0, 139.0), name="Yui"),
            make_presence("u1", timestamp=NOW - 1_000, name="Aki (live)"),
            make_presence("u1", timestamp=NOW - 90_000, name="Aki (older)"),
            make_presence("stranger", timestamp=NOW, name="No profile"),
            make_presence("u4", timestamp=NOW - 10 * 60_000, name="Stale"),
        ]
        profiles = [
            Profile(id="u4", display_name="Sora"),
            Profile(id="u2", display_name="Ren"),
            Profile(id="u1", display_name="Aki"),
            Profile(id="u3", display_name="Yui"),
        ]

        users = user_directory(profiles, classify_liveness(records, NOW))

        assert [(u.id, u.online) for u in users] == [
            ("u1", True), ("u3", True), ("u2", False), ("u4", False),
        ]
        assert users[0].display_name == "Aki (live)"
        assert users[0].last_updated == NOW - 1_000
        assert users[1].location == (35.0, 139.0)
        assert users[3].display_name == "Sora"
        assert users[3].last_updated is None

    def test_offline_entries_use_profile_fields(self):
        profiles = [Profile(id="u1", avatar_image_base64="aGk=", color_value=4280391411)]

        users = user_directory(profiles, classify_liveness([], NOW))

        assert users == [DirectoryEntry(
            id="u1", display_name=UNKNOWN_USER, online=False,
            avatar_image_base64="aGk=", color_value=4280391411,
        )]

    def test_offline_name_ties_break_by_id(self):
        profiles = [Profile(id="b", display_name="Kai"), Profile(id="a", display_name="Kai")]
        users = user_directory(profiles, classify_liveness([], NOW))
        assert [u.id for u in users] == ["a", "b"]

    def test_no_profiles(self, make_presence):
        liveness = classify_liveness([make_presence("a", timestamp=NOW)], NOW)
        assert user_directory([], liveness) == []

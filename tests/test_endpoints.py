"""
Tests for the REST endpoint registry.
"""

import pytest

from screepsapi.adapters.endpoints import ENDPOINTS, build_request, get_endpoint


class TestRegistry:
    """Tests for endpoint lookup."""

    def test_paths_are_api_paths(self):
        for endpoint in ENDPOINTS.values():
            assert endpoint.path.startswith("/api/")
            assert endpoint.method in ("GET", "POST")

    def test_lookup(self):
        endpoint = get_endpoint("user_console")

        assert endpoint.method == "POST"
        assert endpoint.path == "/api/user/console"
        assert endpoint.params == ("expression",)
        assert endpoint.shard is True

    def test_unknown_endpoint(self):
        with pytest.raises(AttributeError):
            get_endpoint("user_teleport")


class TestBuildRequest:
    """Tests for argument binding."""

    def test_positional_defaults_and_shard(self):
        body = build_request(get_endpoint("game_room_terrain"), ("W1N1",), {}, "shard0")

        assert body == {"room": "W1N1", "encoded": 1, "shard": "shard0"}

    def test_snake_case_keywords(self):
        body = build_request(
            get_endpoint("game_map_stats"), (["W1N1"],), {"stat_name": "owner0"}, "shard0"
        )

        assert body == {"rooms": ["W1N1"], "statName": "owner0", "shard": "shard0"}

    def test_wire_name_keywords(self):
        body = build_request(get_endpoint("game_map_stats"), (), {"statName": "owner0"})

        assert body == {"statName": "owner0"}

    def test_explicit_shard(self):
        body = build_request(get_endpoint("game_time"), (), {"shard": "shard3"}, "shard0")

        assert body == {"shard": "shard3"}

    def test_shard_on_plain_endpoint(self):
        with pytest.raises(TypeError):
            build_request(get_endpoint("version"), (), {"shard": "shard1"})

    def test_too_many_positionals(self):
        with pytest.raises(TypeError):
            build_request(get_endpoint("user_find"), ("a", "b"))

    def test_unknown_keyword(self):
        with pytest.raises(TypeError):
            build_request(get_endpoint("user_find"), (), {"nickname": "a"})

    def test_duplicate_argument(self):
        with pytest.raises(TypeError):
            build_request(get_endpoint("user_find"), ("a",), {"username": "b"})

    def test_none_values_dropped(self):
        body = build_request(get_endpoint("leaderboard_list"), (), {"season": None})

        assert body == {"limit": 10, "mode": "world", "offset": 0}

    def test_underscore_parameter(self):
        body = build_request(get_endpoint("game_remove_invader"), (), {"_id": "abc"}, "shard0")

        assert body == {"_id": "abc", "shard": "shard0"}

"""
REST endpoint registry.

One table row per endpoint instead of one hand-written method each; the
facade binds arguments through ``build_request`` and hands the result to
its single ``request`` primitive.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple


@dataclass(frozen=True)
class Endpoint:
    """Static description of one REST call."""

    name: str
    method: str
    path: str
    params: Tuple[str, ...] = ()
    shard: bool = False
    defaults: Mapping[str, Any] = field(default_factory=dict)


def _ep(name, method, path, *params, shard=False, **defaults) -> Endpoint:
    return Endpoint(name, method, path, tuple(params), shard, dict(defaults))


_TABLE = [
    _ep("version", "GET", "/api/version"),
    _ep("servers_list", "POST", "/api/servers/list"),
    # auth
    _ep("auth_signin", "POST", "/api/auth/signin", "email", "password"),
    _ep("auth_steam_ticket", "POST", "/api/auth/steam-ticket", "ticket", "useNativeAuth", useNativeAuth=False),
    _ep("auth_me", "GET", "/api/auth/me"),
    _ep("auth_query_token", "GET", "/api/auth/query-token", "token"),
    # register
    _ep("register_check_email", "GET", "/api/register/check-email", "email"),
    _ep("register_check_username", "GET", "/api/register/check-username", "username"),
    _ep("register_set_username", "POST", "/api/register/set-username", "username"),
    _ep("register_submit", "POST", "/api/register/submit", "username", "email", "password", "modules"),
    # user messages
    _ep("user_messages_list", "GET", "/api/user/messages/list", "respondent"),
    _ep("user_messages_index", "GET", "/api/user/messages/index"),
    _ep("user_messages_unread_count", "GET", "/api/user/messages/unread-count"),
    _ep("user_messages_send", "POST", "/api/user/messages/send", "respondent", "text"),
    _ep("user_messages_mark_read", "POST", "/api/user/messages/mark-read", "id"),
    # game
    _ep("game_map_stats", "POST", "/api/game/map-stats", "rooms", "statName", shard=True),
    _ep("game_gen_unique_object_name", "POST", "/api/game/gen-unique-object-name", "type", shard=True),
    _ep("game_check_unique_object_name", "POST", "/api/game/check-unique-object-name", "type", "name", shard=True),
    _ep("game_place_spawn", "POST", "/api/game/place-spawn", "room", "x", "y", "name", shard=True),
    _ep("game_create_flag", "POST", "/api/game/create-flag", "room", "x", "y", "name", "color", "secondaryColor", shard=True, color=1, secondaryColor=1),
    _ep("game_gen_unique_flag_name", "POST", "/api/game/gen-unique-flag-name", shard=True),
    _ep("game_check_unique_flag_name", "POST", "/api/game/check-unique-flag-name", "name", shard=True),
    _ep("game_change_flag_color", "POST", "/api/game/change-flag-color", "color", "secondaryColor", shard=True, color=1, secondaryColor=1),
    _ep("game_remove_flag", "POST", "/api/game/remove-flag", "room", "name", shard=True),
    _ep("game_add_object_intent", "POST", "/api/game/add-object-intent", "room", "name", "intent", shard=True),
    _ep("game_create_construction", "POST", "/api/game/create-construction", "room", "x", "y", "structureType", "name", shard=True),
    _ep("game_set_notify_when_attacked", "POST", "/api/game/set-notify-when-attacked", "_id", "enabled", shard=True, enabled=True),
    _ep("game_create_invader", "POST", "/api/game/create-invader", "room", "x", "y", "size", "type", "boosted", shard=True, boosted=False),
    _ep("game_remove_invader", "POST", "/api/game/remove-invader", "_id", shard=True),
    _ep("game_time", "GET", "/api/game/time", shard=True),
    _ep("game_world_size", "GET", "/api/game/world-size", shard=True),
    _ep("game_room_decorations", "GET", "/api/game/room-decorations", "room", shard=True),
    _ep("game_room_objects", "GET", "/api/game/room-objects", "room", shard=True),
    _ep("game_room_terrain", "GET", "/api/game/room-terrain", "room", "encoded", shard=True, encoded=1),
    _ep("game_room_status", "GET", "/api/game/room-status", "room", shard=True),
    _ep("game_room_overview", "GET", "/api/game/room-overview", "room", "interval", shard=True, interval=8),
    _ep("game_shards_info", "GET", "/api/game/shards/info"),
    # market
    _ep("game_market_orders_index", "GET", "/api/game/market/orders-index", shard=True),
    _ep("game_market_my_orders", "GET", "/api/game/market/my-orders"),
    _ep("game_market_orders", "GET", "/api/game/market/orders", "resourceType", shard=True),
    _ep("game_market_stats", "GET", "/api/game/market/stats", "resourceType", shard=True),
    # leaderboard
    _ep("leaderboard_list", "GET", "/api/leaderboard/list", "limit", "mode", "offset", "season", limit=10, mode="world", offset=0),
    _ep("leaderboard_find", "GET", "/api/leaderboard/find", "username", "mode", "season", mode="world"),
    _ep("leaderboard_seasons", "GET", "/api/leaderboard/seasons"),
    # user
    _ep("user_badge", "POST", "/api/user/badge", "badge"),
    _ep("user_respawn", "POST", "/api/user/respawn"),
    _ep("user_set_active_branch", "POST", "/api/user/set-active-branch", "branch", "activeName"),
    _ep("user_clone_branch", "POST", "/api/user/clone-branch", "branch", "newName", "defaultModules"),
    _ep("user_delete_branch", "POST", "/api/user/delete-branch", "branch"),
    _ep("user_notify_prefs", "POST", "/api/user/notify-prefs", "disabled", "disabledOnMessages", "sendOnline", "interval", "errorsInterval"),
    _ep("user_tutorial_done", "POST", "/api/user/tutorial-done"),
    _ep("user_email", "POST", "/api/user/email", "email"),
    _ep("user_world_start_room", "GET", "/api/user/world-start-room", shard=True),
    _ep("user_world_status", "GET", "/api/user/world-status"),
    _ep("user_branches", "GET", "/api/user/branches"),
    _ep("user_code_get", "GET", "/api/user/code", "branch"),
    _ep("user_code_post", "POST", "/api/user/code", "branch", "modules", "_hash"),
    _ep("user_decorations_inventory", "GET", "/api/user/decorations/inventory"),
    _ep("user_decorations_themes", "GET", "/api/user/decorations/themes"),
    _ep("user_decorations_convert", "POST", "/api/user/decorations/convert", "decorations"),
    _ep("user_decorations_pixelize", "POST", "/api/user/decorations/pixelize", "count", "theme"),
    _ep("user_decorations_activate", "POST", "/api/user/decorations/activate", "_id", "active"),
    _ep("user_decorations_deactivate", "POST", "/api/user/decorations/deactivate", "decorations"),
    _ep("user_respawn_prohibited_rooms", "GET", "/api/user/respawn-prohibited-rooms"),
    _ep("user_memory_get", "GET", "/api/user/memory", "path", shard=True),
    _ep("user_memory_post", "POST", "/api/user/memory", "path", "value", shard=True),
    _ep("user_memory_segment_get", "GET", "/api/user/memory-segment", "segment", shard=True),
    _ep("user_memory_segment_post", "POST", "/api/user/memory-segment", "segment", "data", shard=True),
    _ep("user_find", "GET", "/api/user/find", "username"),
    _ep("user_find_by_id", "GET", "/api/user/find", "id"),
    _ep("user_stats", "GET", "/api/user/stats", "interval"),
    _ep("user_rooms", "GET", "/api/user/rooms", "id"),
    _ep("user_overview", "GET", "/api/user/overview", "interval", "statName"),
    _ep("user_money_history", "GET", "/api/user/money-history", "page", page=0),
    _ep("user_console", "POST", "/api/user/console", "expression", shard=True),
    _ep("user_name", "GET", "/api/user/name"),
    # misc
    _ep("experimental_pvp", "GET", "/api/experimental/pvp", "interval", interval=100),
    _ep("experimental_nukes", "GET", "/api/experimental/nukes"),
    _ep("warpath_battles", "GET", "/api/warpath/battles", "interval"),
    _ep("scoreboard_list", "GET", "/api/scoreboard/list", "limit", "offset", limit=20, offset=0),
]

ENDPOINTS: Dict[str, Endpoint] = {ep.name: ep for ep in _TABLE}

_SNAKE_RE = re.compile(r"(?<=[a-z0-9])_([a-z])")


def _camel(name: str) -> str:
    """``stat_name`` -> ``statName``; leading underscores are kept."""
    return _SNAKE_RE.sub(lambda m: m.group(1).upper(), name)


def get_endpoint(name: str) -> Endpoint:
    try:
        return ENDPOINTS[name]
    except KeyError:
        raise AttributeError(f"Unknown endpoint: {name}") from None


def build_request(
    endpoint: Endpoint,
    args: Sequence[Any] = (),
    kwargs: Optional[Mapping[str, Any]] = None,
    default_shard: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Bind call arguments to an endpoint's wire parameters.

    Positional arguments follow ``endpoint.params``; keywords may use the
    wire name (``statName``) or its snake_case form (``stat_name``).
    Parameters left unset and without a default are omitted.

    Raises:
        TypeError: Too many positional arguments, an unknown keyword, or a
            parameter given twice
    """
    kwargs = dict(kwargs or {})
    if len(args) > len(endpoint.params):
        raise TypeError(
            f"{endpoint.name}() takes at most {len(endpoint.params)} "
            f"positional arguments ({len(args)} given)"
        )

    body: Dict[str, Any] = dict(zip(endpoint.params, args))
    shard = kwargs.pop("shard", None)
    if shard is not None and not endpoint.shard:
        raise TypeError(f"{endpoint.name}() is not shard-aware")

    for key, value in kwargs.items():
        wire = key if key in endpoint.params else _camel(key)
        if wire not in endpoint.params:
            raise TypeError(f"{endpoint.name}() got an unexpected keyword argument '{key}'")
        if wire in body:
            raise TypeError(f"{endpoint.name}() got multiple values for argument '{wire}'")
        body[wire] = value

    for name, default in endpoint.defaults.items():
        body.setdefault(name, default)

    body = {k: v for k, v in body.items() if v is not None}
    if endpoint.shard:
        body["shard"] = shard or default_shard
        if body["shard"] is None:
            del body["shard"]
    return body

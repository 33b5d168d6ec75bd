"""Configuration records and RPC messages of the shard controller."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

NSHARDS = 10
"""Number of shards the key space is split into."""


class Err(str, enum.Enum):
    """Outcome of a controller request."""

    OK = "OK"
    WRONG_LEADER = "ErrWrongLeader"
    TIMEOUT = "ErrTimeout"


def copy_groups(groups: dict[int, list[str]]) -> dict[int, list[str]]:
    """Return a copy of a gid -> servers mapping with fresh server lists."""
    return {gid: list(servers) for gid, servers in groups.items()}


def _unassigned_shards() -> list[int]:
    return [0] * NSHARDS


@dataclass
class Config:
    """An assignment of shards to replica groups.

    Config 0 has no groups and every shard assigned to gid 0, the invalid group.
    """

    num: int = 0
    shards: list[int] = field(default_factory=_unassigned_shards)
    groups: dict[int, list[str]] = field(default_factory=dict)

    def copy(self) -> Config:
        """Return a deep copy of this configuration."""
        return Config(self.num, list(self.shards), copy_groups(self.groups))


@dataclass
class JoinArgs:
    servers: dict[int, list[str]]
    client_id: int = 0
    command_id: int = 0


@dataclass
class LeaveArgs:
    gids: list[int]
    client_id: int = 0
    command_id: int = 0


@dataclass
class MoveArgs:
    shard: int
    gid: int
    client_id: int = 0
    command_id: int = 0


@dataclass
class QueryArgs:
    num: int
    client_id: int = 0
    command_id: int = 0


@dataclass
class JoinReply:
    wrong_leader: bool = False
    err: Err = Err.OK


@dataclass
class LeaveReply:
    wrong_leader: bool = False
    err: Err = Err.OK


@dataclass
class MoveReply:
    wrong_leader: bool = False
    err: Err = Err.OK


@dataclass
class QueryReply:
    wrong_leader: bool = False
    err: Err = Err.OK
    config: Config = field(default_factory=Config)


def format_config(config: Config) -> str:
    """Render a configuration as one line for its number and one per shard."""
    lines = [f"cf.Num = {config.num}"]
    lines.extend(
        f"shard {shard} belongs to gid {gid}" for shard, gid in enumerate(config.shards)
    )
    return "\n".join(lines) + "\n"
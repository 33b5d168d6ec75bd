"""Requests, replies and shard routing of the sharded key/value service."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from shardstore.ctrler_common import NSHARDS

GET = "Get"
PUT = "Put"
APPEND = "Append"


class Err(str, enum.Enum):
    """Outcome of a key/value request."""

    OK = "OK"
    NO_KEY = "ErrNoKey"
    WRONG_GROUP = "ErrWrongGroup"
    WRONG_LEADER = "ErrWrongLeader"
    NOT_READY = "ErrNotReady"
    TIMEOUT = "ErrTimeout"


def key2shard(key: str) -> int:
    """Return the shard a key belongs to, chosen by its first byte."""
    if not key:
        return 0
    return key.encode("utf-8")[0] % NSHARDS


@dataclass
class ApplyRecord:
    """Latest applied command of one client and its outcome."""

    command_id: int
    error: Err


@dataclass
class PutAppendArgs:
    key: str
    value: str
    op: str
    client_id: int = 0
    command_id: int = 0

    def __post_init__(self) -> None:
        if self.op not in (PUT, APPEND):
            raise ValueError(f"op must be {PUT!r} or {APPEND!r}, not {self.op!r}")


@dataclass
class PutAppendReply:
    err: Err = Err.OK


@dataclass
class GetArgs:
    key: str
    client_id: int = 0
    command_id: int = 0


@dataclass
class GetReply:
    err: Err = Err.OK
    value: str = ""


@dataclass
class MigrateDataArgs:
    config_num: int
    shard_ids: list[int] = field(default_factory=list)


@dataclass
class MigrateDataReply:
    err: Err = Err.OK
    config_num: int = 0
    kv_db: dict[int, dict[str, str]] = field(default_factory=dict)
    last_opr: dict[int, ApplyRecord] = field(default_factory=dict)


@dataclass
class CleanShardArgs:
    config_num: int
    shard_ids: list[int] = field(default_factory=list)


@dataclass
class CleanShardReply:
    err: Err = Err.OK
    config_num: int = 0
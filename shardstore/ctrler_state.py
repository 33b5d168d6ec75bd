"""Replicated state machine of the shard controller."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field

from shardstore.ctrler_common import (
    NSHARDS,
    Config,
    Err,
    JoinArgs,
    JoinReply,
    LeaveArgs,
    LeaveReply,
    MoveArgs,
    MoveReply,
    QueryArgs,
    QueryReply,
    copy_groups,
)

logger = logging.getLogger(__name__)


class OpKind(str, enum.Enum):
    JOIN = "Join"
    LEAVE = "Leave"
    MOVE = "Move"
    QUERY = "Query"


@dataclass
class Op:
    """A command applied to the controller's state machine."""

    kind: OpKind
    servers: dict[int, list[str]] = field(default_factory=dict)
    gids: list[int] = field(default_factory=list)
    shard: int = 0
    gid: int = 0
    num: int = 0
    client_id: int = 0
    command_id: int = 0


@dataclass
class ApplyRecord:
    """Latest applied command of one client and its outcome."""

    command_id: int
    error: Err


class UnknownGroupError(ValueError):
    """A shard was moved to a group that is not part of the configuration."""


def make_op(args) -> Op:
    """Build the state-machine command for a request."""
    if isinstance(args, JoinArgs):
        return Op(OpKind.JOIN, servers=args.servers,
                  client_id=args.client_id, command_id=args.command_id)
    if isinstance(args, LeaveArgs):
        return Op(OpKind.LEAVE, gids=list(args.gids),
                  client_id=args.client_id, command_id=args.command_id)
    if isinstance(args, MoveArgs):
        return Op(OpKind.MOVE, shard=args.shard, gid=args.gid,
                  client_id=args.client_id, command_id=args.command_id)
    if isinstance(args, QueryArgs):
        return Op(OpKind.QUERY, num=args.num,
                  client_id=args.client_id, command_id=args.command_id)
    raise TypeError(f"unknown request type {type(args).__name__}")


def _spread(g2s: dict[int, list[int]], keys: list[int], shards: list[int]) -> None:
    """Deal shards, last first, round-robin over the given gids."""
    for i, shard in enumerate(reversed(shards)):
        g2s[keys[i % len(keys)]].append(shard)


def gid_to_shards(config: Config) -> dict[int, list[int]]:
    """Map every group of a configuration to the shards it should hold.

    Shards owned by a group that no longer exists are dealt out to the
    remaining groups; with no groups, gid 0 holds every shard.
    """
    g2s: dict[int, list[int]] = {}
    unassigned: list[int] = []
    for shard, gid in enumerate(config.shards):
        if gid not in config.groups:
            unassigned.append(shard)
            continue
        g2s.setdefault(gid, []).append(shard)
    for gid in config.groups:
        g2s.setdefault(gid, [])

    keys = sorted(g2s)
    if not keys or keys == [0]:
        g2s[0] = list(range(NSHARDS))
        return g2s

    triggered = 0
    if 0 in g2s:
        orphans = g2s.pop(0)
        keys = [k for k in keys if k != 0]
        _spread(g2s, keys, orphans)
        triggered += 1
    if unassigned:
        _spread(g2s, keys, unassigned)
        triggered += 1
    if triggered == 2:
        logger.warning("gid 0 shards and unassigned shards were redistributed together")
    return g2s


def most_and_fewest(g2s: dict[int, list[int]]) -> tuple[int, int]:
    """Return the gids holding the most and the fewest shards.

    Ties go to the smallest gid so the result is deterministic.
    """
    max_gid, max_count = -1, -1
    min_gid, min_count = -1, NSHARDS + 1
    for gid in sorted(g2s):
        count = len(g2s[gid])
        if count < min_count:
            min_gid, min_count = gid, count
        if count > max_count:
            max_gid, max_count = gid, count
    return max_gid, min_gid


def _rebalance(g2s: dict[int, list[int]]) -> None:
    while True:
        max_gid, min_gid = most_and_fewest(g2s)
        if len(g2s[max_gid]) - len(g2s[min_gid]) <= 1:
            return
        g2s[min_gid].append(g2s[max_gid].pop(0))


def _shards_from(g2s: dict[int, list[int]]) -> list[int]:
    shards = [0] * NSHARDS
    for gid, owned in g2s.items():
        for shard in owned:
            shards[shard] = gid
    return shards


_REPLY_TYPES = {
    OpKind.JOIN: JoinReply,
    OpKind.LEAVE: LeaveReply,
    OpKind.MOVE: MoveReply,
}


class ShardController:
    """Keeps the numbered history of configurations and applies requests.

    A controller that is not the leader refuses changes but still answers
    queries for configurations it already holds.
    """

    def __init__(self, leader: bool = True) -> None:
        self.leader = leader
        self.configs: list[Config] = [Config()]
        self.last_ops: dict[int, ApplyRecord] = {}
        self._lock = threading.Lock()

    def is_duplicated(self, kind: OpKind, client_id: int, command_id: int) -> bool:
        """Tell whether a change request has already been applied."""
        if kind is OpKind.QUERY:
            return False
        record = self.last_ops.get(client_id)
        return record is not None and command_id <= record.command_id

    def config(self, num: int) -> Config:
        """Return a copy of config ``num``, or of the latest one if out of range."""
        if num < 0 or num >= len(self.configs):
            return self.configs[-1].copy()
        return self.configs[num].copy()

    def _next_config(self) -> Config:
        last = self.configs[-1]
        return Config(len(self.configs), list(last.shards), copy_groups(last.groups))

    def join(self, servers: dict[int, list[str]]) -> Config:
        """Add replica groups, rebalance, and return the new configuration."""
        current = self._next_config()
        for gid, names in servers.items():
            current.groups.setdefault(gid, list(names))
        g2s = gid_to_shards(current)
        _rebalance(g2s)
        current.shards = _shards_from(g2s)
        self.configs.append(current)
        return current.copy()

    def leave(self, gids: list[int]) -> Config:
        """Remove replica groups, hand their shards to the lightest groups."""
        current = self._next_config()
        g2s = gid_to_shards(current)
        outstanding: list[int] = []
        for gid in gids:
            current.groups.pop(gid, None)
            if gid in g2s:
                outstanding.extend(g2s.pop(gid))
        if not current.groups:
            current.shards = [0] * NSHARDS
        else:
            for shard in outstanding:
                _, min_gid = most_and_fewest(g2s)
                g2s[min_gid].append(shard)
            current.shards = _shards_from(g2s)
        self.configs.append(current)
        return current.copy()

    def move(self, shard: int, gid: int) -> Config:
        """Assign one shard to a group and return the new configuration."""
        current = self._next_config()
        if gid not in current.groups:
            raise UnknownGroupError(f"move to gid {gid} that is not in the groups")
        if not 0 <= shard < NSHARDS:
            raise IndexError(f"shard {shard} out of range")
        current.shards[shard] = gid
        self.configs.append(current)
        return current.copy()

    def query(self, num: int) -> Config:
        """Return config ``num``, or the latest for -1 or an unknown number."""
        return self.config(num)

    def apply(self, op: Op) -> tuple[Err, Config | None]:
        """Apply a committed command; a repeated change returns its first outcome."""
        if self.is_duplicated(op.kind, op.client_id, op.command_id):
            logger.debug("duplicated command %d from client %d", op.command_id, op.client_id)
            return self.last_ops[op.client_id].error, None
        config: Config | None = None
        if op.kind is OpKind.JOIN:
            self.join(op.servers)
        elif op.kind is OpKind.LEAVE:
            self.leave(op.gids)
        elif op.kind is OpKind.MOVE:
            self.move(op.shard, op.gid)
        elif op.kind is OpKind.QUERY:
            config = self.query(op.num)
        else:
            raise ValueError(f"unknown operation {op.kind!r}")
        if op.kind is not OpKind.QUERY:
            self.last_ops[op.client_id] = ApplyRecord(op.command_id, Err.OK)
        return Err.OK, config

    def handle(self, args):
        """Serve one request and return its reply."""
        with self._lock:
            if isinstance(args, QueryArgs):
                if 0 <= args.num < len(self.configs):
                    return QueryReply(False, Err.OK, self.config(args.num))
                if not self.leader:
                    return QueryReply(True, Err.WRONG_LEADER)
                err, config = self.apply(make_op(args))
                return QueryReply(err is not Err.OK, err, config or Config())

            op = make_op(args)
            reply_type = _REPLY_TYPES[op.kind]
            if self.is_duplicated(op.kind, op.client_id, op.command_id):
                return reply_type(False, self.last_ops[op.client_id].error)
            if not self.leader:
                return reply_type(True, Err.WRONG_LEADER)
            err, _ = self.apply(op)
            return reply_type(err is not Err.OK, err)
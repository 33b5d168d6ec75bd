"""Shard hand-off between replica groups and construction of client commands."""

from __future__ import annotations

import logging

from shardstore.kv_common import (
    GET,
    CleanShardArgs,
    CleanShardReply,
    Err,
    GetArgs,
    MigrateDataArgs,
    MigrateDataReply,
    PutAppendArgs,
)
from shardstore.kv_state import CleanShards, Op, PullShards, ShardKVState, ShardStatus

logger = logging.getLogger(__name__)


def make_op(args) -> Op:
    """Build the state-machine command for a client request."""
    if isinstance(args, GetArgs):
        return Op(GET, args.key, "", args.client_id, args.command_id)
    if isinstance(args, PutAppendArgs):
        return Op(args.op, args.key, args.value, args.client_id, args.command_id)
    raise TypeError(f"unknown request type {type(args).__name__}")


def serve_pull_request(state: ShardKVState, args: MigrateDataArgs) -> MigrateDataReply:
    """Answer another group's request for shard data.

    A group that has not yet reached the requested configuration answers
    ``ErrNotReady`` with its own configuration number.
    """
    current = state.cur_config.num
    if current < args.config_num:
        return MigrateDataReply(Err.NOT_READY, current)
    if current > args.config_num:
        logger.warning("pull request for config %d while at config %d",
                       args.config_num, current)

    shards: dict[int, dict[str, str]] = {}
    for shard_id in args.shard_ids:
        if state.db_status[shard_id] is ShardStatus.PULLING:
            logger.warning("shard %d requested while it is itself being pulled", shard_id)
        shards[shard_id] = dict(state.kv_db[shard_id])
    return MigrateDataReply(Err.OK, args.config_num, shards, dict(state.last_oprs))


def pull_shards_command(reply: MigrateDataReply) -> PullShards:
    """Turn a successful pull reply into the command that installs its data."""
    return PullShards(
        reply.config_num,
        {shard_id: dict(db) for shard_id, db in reply.kv_db.items()},
        dict(reply.last_opr),
    )


def clean_request_outcome(state: ShardKVState, args: CleanShardArgs) -> CleanShards | None:
    """Decide how to answer a request to drop shards that were handed off.

    Returns None when the request is already satisfied and can be answered
    ``OK`` at once, or the pushed CleanShards command that must be applied first.
    """
    current = state.cur_config.num
    if current > args.config_num:
        return None
    if current < args.config_num:
        logger.warning("clean request for config %d while at config %d",
                       args.config_num, current)

    serving = [state.db_status[shard_id] is ShardStatus.SERVING for shard_id in args.shard_ids]
    if any(serving):
        if not all(serving):
            logger.warning("clean request for shards %s with mixed statuses %s",
                           args.shard_ids, state.db_status)
        return None
    return CleanShards(args.config_num, list(args.shard_ids), push=True)


def clean_shards_command(reply: CleanShardReply, shard_ids: list[int]) -> CleanShards:
    """Build the command that ends garbage collection once the old owner has cleaned."""
    return CleanShards(reply.config_num, list(shard_ids), push=False)
"""Replicated state machine of one key/value replica group."""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field

from shardstore.ctrler_common import NSHARDS, Config
from shardstore.kv_common import APPEND, GET, PUT, ApplyRecord, Err, key2shard

logger = logging.getLogger(__name__)


class ShardStatus(enum.IntEnum):
    """Migration state of one shard in a replica group."""

    SERVING = 0
    PULLING = 1
    BE_PULLING = 2
    GCING = 3


@dataclass
class Op:
    """A client read or write applied to the state machine."""

    opr: str
    key: str
    value: str = ""
    client_id: int = 0
    command_id: int = 0


@dataclass
class Configuration:
    """Command that moves the group to the next configuration."""

    config: Config


@dataclass
class PullShards:
    """Command that installs shard data fetched from another group."""

    config_num: int
    shards: dict[int, dict[str, str]] = field(default_factory=dict)
    last_operations: dict[int, ApplyRecord] = field(default_factory=dict)


@dataclass
class CleanShards:
    """Command that finishes a migration for some shards.

    With ``push`` set the request came from another group and a reply is due.
    """

    config_num: int
    shard_ids: list[int] = field(default_factory=list)
    push: bool = False


@dataclass
class NotifyMsg:
    """Result handed back to the request that started a command."""

    error: Err = Err.OK
    value: str = ""


def _config_to_json(config: Config) -> dict:
    return {
        "num": config.num,
        "shards": list(config.shards),
        "groups": {str(gid): list(servers) for gid, servers in config.groups.items()},
    }


def _config_from_json(data: dict) -> Config:
    return Config(
        int(data["num"]),
        [int(gid) for gid in data["shards"]],
        {int(gid): [str(s) for s in servers] for gid, servers in data["groups"].items()},
    )


class ShardKVState:
    """Key/value data, shard statuses and configurations of one group."""

    def __init__(self, gid: int, me: int = 0) -> None:
        self.gid = gid
        self.me = me
        self.last_applied = 0
        self.cur_config = Config()
        self.last_config = Config()
        self.my_shards: list[bool] = [False] * NSHARDS
        self.kv_db: list[dict[str, str]] = [{} for _ in range(NSHARDS)]
        self.db_status: list[ShardStatus] = [ShardStatus.SERVING] * NSHARDS
        self.last_oprs: dict[int, ApplyRecord] = {}

    def can_serve(self, shard_id: int) -> bool:
        """Tell whether this group currently serves a shard."""
        return self.cur_config.shards[shard_id] == self.gid and self.db_status[shard_id] in (
            ShardStatus.SERVING,
            ShardStatus.GCING,
        )

    def is_duplicated(self, opr: str, client_id: int, command_id: int) -> bool:
        """Tell whether a write has already been applied."""
        if opr == GET:
            return False
        record = self.last_oprs.get(client_id)
        return record is not None and command_id <= record.command_id

    def all_serving(self) -> bool:
        """Tell whether no shard is in the middle of a migration."""
        return all(status is ShardStatus.SERVING for status in self.db_status)

    def _apply_to_db(self, op: Op, shard_id: int) -> tuple[Err, str]:
        db = self.kv_db[shard_id]
        if op.opr == GET:
            if op.key in db:
                return Err.OK, db[op.key]
            return Err.NO_KEY, ""
        if op.opr == PUT:
            db[op.key] = op.value
            return Err.OK, ""
        if op.opr == APPEND:
            db[op.key] = db.get(op.key, "") + op.value
            return Err.OK, ""
        raise ValueError(f"unknown operation {op.opr!r}")

    def apply_operation(self, op: Op) -> NotifyMsg:
        """Apply a client read or write and return its result."""
        if self.is_duplicated(op.opr, op.client_id, op.command_id):
            logger.debug("duplicated command %d from client %d", op.command_id, op.client_id)
            return NotifyMsg(self.last_oprs[op.client_id].error)
        shard_id = key2shard(op.key)
        if not self.can_serve(shard_id):
            return NotifyMsg(Err.WRONG_GROUP)
        err, value = self._apply_to_db(op, shard_id)
        if op.opr != GET:
            self.last_oprs[op.client_id] = ApplyRecord(op.command_id, err)
        return NotifyMsg(err, value)

    def _update_shard_status(self, next_config: Config) -> None:
        if next_config.num == 1:
            return
        for shard_id in range(NSHARDS):
            owned_now = self.cur_config.shards[shard_id] == self.gid
            owned_next = next_config.shards[shard_id] == self.gid
            if owned_now and not owned_next:
                self.db_status[shard_id] = ShardStatus.BE_PULLING
            elif owned_next and not owned_now:
                self.db_status[shard_id] = ShardStatus.PULLING

    def apply_configuration(self, next_config: Config) -> bool:
        """Move to the next configuration; return whether it was taken."""
        if next_config.num != self.cur_config.num + 1:
            logger.debug("ignoring config %d at config %d", next_config.num, self.cur_config.num)
            return False
        if not self.all_serving():
            logger.warning("shards %s not all serving when applying config %d",
                           self.db_status, next_config.num)
            return False
        self._update_shard_status(next_config)
        self.last_config = self.cur_config.copy()
        self.cur_config = next_config.copy()
        return True

    def apply_pull_shards(self, pull: PullShards) -> list[int]:
        """Install pulled shards that are awaited; return their ids."""
        if pull.config_num != self.cur_config.num:
            logger.debug("pulled shards for config %d at config %d",
                         pull.config_num, self.cur_config.num)
            return []
        installed = []
        for shard_id, shard_db in pull.shards.items():
            if self.db_status[shard_id] is not ShardStatus.PULLING:
                continue
            self.kv_db[shard_id].update(shard_db)
            self.db_status[shard_id] = ShardStatus.GCING
            installed.append(shard_id)
        for client_id, record in pull.last_operations.items():
            known = self.last_oprs.get(client_id)
            if known is None or known.command_id < record.command_id:
                self.last_oprs[client_id] = record
        return installed

    def apply_clean_shards(self, clean: CleanShards) -> None:
        """Finish migration of shards: drop handed-off data, resume serving."""
        if clean.config_num != self.cur_config.num:
            return
        for shard_id in clean.shard_ids:
            status = self.db_status[shard_id]
            if status is ShardStatus.GCING:
                if clean.push:
                    logger.warning("shard %d is GCing while clean request is pushed", shard_id)
                self.db_status[shard_id] = ShardStatus.SERVING
            elif status is ShardStatus.BE_PULLING:
                if not clean.push:
                    logger.warning("shard %d is BePulling while clean is not pushed", shard_id)
                self.kv_db[shard_id] = {}
                self.db_status[shard_id] = ShardStatus.SERVING
            elif status is ShardStatus.PULLING:
                logger.warning("shard %d still pulling when cleaning", shard_id)

    def apply(self, command) -> NotifyMsg | None:
        """Apply one committed command; return the reply it owes, if any."""
        if isinstance(command, Op):
            return self.apply_operation(command)
        if isinstance(command, Configuration):
            self.apply_configuration(command.config)
        elif isinstance(command, PullShards):
            self.apply_pull_shards(command)
        elif isinstance(command, CleanShards):
            self.apply_clean_shards(command)
            if command.push:
                return NotifyMsg(Err.OK)
        elif isinstance(command, int):
            if command != 0:
                logger.warning("no-op command %d is not zero", command)
        else:
            logger.debug("ignoring command of type %s", type(command).__name__)
        return None

    def shard_ids_by_status(self, status: ShardStatus) -> dict[int, list[int]]:
        """Group shards in a status by the gid that held them in the last config."""
        result: dict[int, list[int]] = {}
        for shard_id, shard_status in enumerate(self.db_status):
            if shard_status is status:
                result.setdefault(self.last_config.shards[shard_id], []).append(shard_id)
        return result

    def encode_snapshot(self) -> bytes:
        """Serialize the whole state machine."""
        data = {
            "last_applied": self.last_applied,
            "cur_config": _config_to_json(self.cur_config),
            "last_config": _config_to_json(self.last_config),
            "my_shards": list(self.my_shards),
            "kv_db": self.kv_db,
            "last_oprs": {
                str(cid): [rec.command_id, rec.error.value]
                for cid, rec in self.last_oprs.items()
            },
            "db_status": [int(status) for status in self.db_status],
        }
        return json.dumps(data, sort_keys=True).encode("utf-8")

    def restore_snapshot(self, data: bytes) -> None:
        """Replace the state with a snapshot; empty data leaves it unchanged."""
        if not data:
            return
        try:
            decoded = json.loads(data.decode("utf-8"))
            last_applied = int(decoded["last_applied"])
            cur_config = _config_from_json(decoded["cur_config"])
            last_config = _config_from_json(decoded["last_config"])
            my_shards = [bool(v) for v in decoded["my_shards"]]
            kv_db = [{str(k): str(v) for k, v in shard.items()} for shard in decoded["kv_db"]]
            last_oprs = {
                int(cid): ApplyRecord(int(cmd), Err(err))
                for cid, (cmd, err) in decoded["last_oprs"].items()
            }
            db_status = [ShardStatus(int(v)) for v in decoded["db_status"]]
        except (UnicodeDecodeError, KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ValueError("malformed snapshot") from exc
        if len(kv_db) != NSHARDS or len(db_status) != NSHARDS:
            raise ValueError("malformed snapshot")
        self.last_applied = last_applied
        self.cur_config = cur_config
        self.last_config = last_config
        self.my_shards = my_shards
        self.kv_db = kv_db
        self.last_oprs = last_oprs
        self.db_status = db_status
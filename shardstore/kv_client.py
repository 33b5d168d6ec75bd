"""Client of the sharded key/value service."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable

from shardstore.ctrler_client import Clerk as ControllerClerk
from shardstore.ctrler_client import make_client_id
from shardstore.kv_common import (
    APPEND,
    PUT,
    Err,
    GetArgs,
    PutAppendArgs,
    key2shard,
)

logger = logging.getLogger(__name__)


class Clerk:
    """Routes requests to the replica group that owns each key.

    ``ctrlers`` are controller servers, each with a ``handle(args)`` method.
    ``make_end(name)`` turns a server name from a configuration into an object
    with a ``handle(args)`` method. A call that raises ConnectionError or
    returns None counts as lost. When no server of the owning group accepts,
    the clerk waits ``retry_interval`` seconds and fetches the latest
    configuration before trying again.
    """

    def __init__(self, ctrlers: Iterable[Any], make_end: Callable[[str], Any],
                 client_id: int | None = None, retry_interval: float = 0.1) -> None:
        self.ctrler = ControllerClerk(ctrlers, retry_interval=retry_interval)
        self.make_end = make_end
        self.client_id = make_client_id() if client_id is None else client_id
        self.command_id = 0
        self.retry_interval = retry_interval
        self.config = self.ctrler.query(-1)

    def _next_command_id(self) -> int:
        command_id = self.command_id
        self.command_id += 1
        return command_id

    def _request(self, key: str, args, accepted: tuple[Err, ...]):
        shard = key2shard(key)
        while True:
            gid = self.config.shards[shard]
            for name in self.config.groups.get(gid, ()):
                try:
                    reply = self.make_end(name).handle(args)
                except ConnectionError:
                    continue
                if reply is None:
                    continue
                if reply.err in accepted:
                    logger.debug("client %d: command %d done by group %d",
                                 self.client_id, args.command_id, gid)
                    return reply
                if reply.err is Err.WRONG_GROUP:
                    break
            time.sleep(self.retry_interval)
            self.config = self.ctrler.query(-1)

    def get(self, key: str) -> str:
        """Return the value of a key, or "" if it does not exist."""
        args = GetArgs(key, self.client_id, self._next_command_id())
        return self._request(key, args, (Err.OK, Err.NO_KEY)).value

    def put_append(self, key: str, value: str, op: str) -> None:
        """Store or append a value; ``op`` is "Put" or "Append"."""
        if op not in (PUT, APPEND):
            raise ValueError(f"op must be {PUT!r} or {APPEND!r}, not {op!r}")
        args = PutAppendArgs(key, value, op, self.client_id, self.command_id)
        self.command_id += 1
        self._request(key, args, (Err.OK,))

    def put(self, key: str, value: str) -> None:
        """Set a key to a value."""
        self.put_append(key, value, PUT)

    def append(self, key: str, value: str) -> None:
        """Append a value to a key."""
        self.put_append(key, value, APPEND)
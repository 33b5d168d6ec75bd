"""Client that talks to a set of shard controller servers."""

from __future__ import annotations

import logging
import secrets
import time
from typing import Any, Iterable

from shardstore.ctrler_common import Config, JoinArgs, LeaveArgs, MoveArgs, QueryArgs

logger = logging.getLogger(__name__)


def make_client_id() -> int:
    """Return a random client identifier below 2**62."""
    return secrets.randbelow(1 << 62)


class Clerk:
    """Sends requests to controller servers until one of them accepts.

    Each server is an object with a ``handle(args)`` method. A call that
    raises ConnectionError or returns None counts as lost; a reply marked
    ``wrong_leader`` moves on to the next server. After a full round without
    success the clerk waits ``retry_interval`` seconds and starts over.
    """

    def __init__(self, servers: Iterable[Any], client_id: int | None = None,
                 retry_interval: float = 0.1) -> None:
        self.servers = list(servers)
        self.client_id = make_client_id() if client_id is None else client_id
        self.command_id = 0
        self.retry_interval = retry_interval

    def _next_command_id(self) -> int:
        command_id = self.command_id
        self.command_id += 1
        return command_id

    def _call(self, args):
        while True:
            logger.debug("client %d: sending %s", self.client_id, type(args).__name__)
            for server in self.servers:
                try:
                    reply = server.handle(args)
                except ConnectionError:
                    continue
                if reply is not None and not reply.wrong_leader:
                    return reply
            time.sleep(self.retry_interval)

    def query(self, num: int) -> Config:
        """Fetch config ``num``, or the latest one for -1."""
        args = QueryArgs(num, self.client_id, self._next_command_id())
        return self._call(args).config

    def join(self, servers: dict[int, list[str]]) -> None:
        """Add replica groups (gid -> server names)."""
        self._call(JoinArgs(servers, self.client_id, self._next_command_id()))

    def leave(self, gids: list[int]) -> None:
        """Remove replica groups."""
        self._call(LeaveArgs(list(gids), self.client_id, self._next_command_id()))

    def move(self, shard: int, gid: int) -> None:
        """Hand one shard to a group."""
        self._call(MoveArgs(shard, gid, self.client_id, self._next_command_id()))
# shardstore

`shardstore` provides deterministic state machines and clients for a sharded
key/value service. The service has two parts:

- a **shard controller**. It keeps a numbered history of configurations. Each
  configuration assigns every one of the `NSHARDS` (10) shards to a replica
  group, and the shards are spread evenly over the groups.
- **key/value replica groups**. Each group serves the shards that its current
  configuration gives it. When the configuration changes, it hands shards over
  to other groups.

All state is held in plain Python objects. Commands are applied in the order
you give them, so the same sequence of commands produces the same state on
every replica.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Shard controller

`shardstore.ctrler_common` defines `Config`, with the fields `num`, `shards`
and `groups`, and `Config.copy()`. It also defines the request and reply
dataclasses (`JoinArgs`, `LeaveArgs`, `MoveArgs`, `QueryArgs`, and the
matching `*Reply` classes), the `Err` enum, `copy_groups` and `format_config`.

```python
from shardstore.ctrler_state import ShardController

ctrl = ShardController()
ctrl.join({1: ["x", "y", "z"]})
ctrl.join({2: ["a", "b", "c"]})
latest = ctrl.query(-1)
print(latest.num, latest.shards)   # 2, shards split 5/5 between groups 1 and 2

ctrl.move(0, 2)                     # hand shard 0 to group 2
ctrl.leave([1])                     # group 1's shards go to group 2
print(ctrl.config(1))               # earlier configurations stay available
```

- `join`, `leave` and `move` each add a new configuration and return a copy of
  it.
- `join` rebalances the shards so that no group holds more than one shard more
  than any other group.
- `leave` hands the departing groups' shards, one at a time, to the group that
  currently holds the fewest. When no groups are left, every shard goes to
  gid 0.
- `move` raises `UnknownGroupError` for a gid that is not in the configuration,
  and `IndexError` for a shard number outside `0..NSHARDS-1`.
- `query(num)` and `config(num)` return a copy of configuration `num`. For -1,
  or for any number outside the history, they return the latest configuration.

`ShardController.apply(op)` applies a command built by `make_op(args)` from a
request. It returns `(Err, Config | None)`; the configuration is filled in only
for queries. The controller remembers the latest command id of each client. A
change request whose command id is not newer than that is not applied again:
`apply` returns the error recorded for the client's last command.

`ShardController.handle(args)` serves one request and returns its reply. A
controller created with `leader=False` still answers queries for
configurations it already holds. It refuses any other request with
`wrong_leader=True` and `Err.WRONG_LEADER`.

`shardstore.ctrler_client.Clerk(servers)` sends requests to a list of objects
that have a `handle(args)` method; a `ShardController` is one such object. The
clerk's methods are `query`, `join`, `leave` and `move`.

- A call that raises `ConnectionError`, or returns `None`, counts as lost.
- A reply marked `wrong_leader` makes the clerk try the next server.
- After a full round without success, the clerk sleeps for `retry_interval`
  seconds and starts over.
- Client ids come from `make_client_id()`.

## Key/value replica group state

`shardstore.kv_common` defines:

- the request and reply dataclasses (`GetArgs`, `PutAppendArgs`,
  `MigrateDataArgs`, `CleanShardArgs` and their replies);
- `ApplyRecord` and the `Err` enum;
- `key2shard`, which maps a key to a shard by the first byte of its UTF-8
  encoding modulo `NSHARDS`, with shard 0 for the empty key.

`PutAppendArgs` raises `ValueError` unless `op` is `"Put"` or `"Append"`.

`shardstore.kv_state.ShardKVState(gid)` is the state machine of one group.
`apply(command)` takes these commands in log order:

- `Op`: a client `Get`, `Put` or `Append`. It returns a `NotifyMsg`.
  - `ErrWrongGroup` means the group does not currently serve the key's shard.
  - `ErrNoKey` means the key is missing.
  - Repeated writes are not applied again.
- `Configuration`: adopts the next configuration. It is accepted only if its
  number is exactly one above the current one and every shard is `SERVING`.
  Shards the group gains become `PULLING`; shards it loses become
  `BE_PULLING`. The move to configuration 1 changes no statuses.
- `PullShards`: installs data for shards that are `PULLING`, which then become
  `GCING`. It also merges the duplicate-detection records.
- `CleanShards`: `GCING` shards return to `SERVING`. `BE_PULLING` shards are
  emptied and return to `SERVING`. A pushed clean returns `NotifyMsg(Err.OK)`.
- an integer: treated as a no-op.

Other useful methods:

- `can_serve` and `is_duplicated`;
- `all_serving`;
- `shard_ids_by_status(status)`, which groups shards by the gid that held them
  in the previous configuration;
- `encode_snapshot()` and `restore_snapshot(data)`. `encode_snapshot()` returns
  the whole state as JSON bytes. `restore_snapshot(data)` loads such a
  snapshot: empty data leaves the state unchanged, and malformed data raises
  `ValueError`.

`shardstore.kv_migration` holds the steps for moving shards between groups:

- `serve_pull_request(state, args)` answers another group's request for shard
  data. A group that has not reached the requested configuration answers
  `ErrNotReady`.
- `pull_shards_command(reply)` turns a successful pull reply into a
  `PullShards` command.
- `clean_request_outcome(state, args)` returns `None` when a clean request can
  be answered `OK` at once. Otherwise it returns the pushed `CleanShards`
  command that must be applied first.
- `clean_shards_command(reply, shard_ids)` builds the command that ends garbage
  collection on the receiving side.
- `make_op(args)` builds an `Op` from a `GetArgs` or `PutAppendArgs`.

`shardstore.kv_client.Clerk(ctrlers, make_end)` finds the owner group of each
key through `key2shard` and the latest controller configuration.
`make_end(name)` must return an object with a `handle(args)` method for a
server name from the configuration. The clerk's methods are `get`, `put`,
`append` and `put_append`. When a group answers `ErrWrongGroup`, or no server
of the group accepts, the clerk waits, fetches the latest configuration, and
tries again.

## What this package does not do

- **No replication.** There is no consensus log to replicate commands across
  replicas.
- **No network transport or RPC layer.** The clerks only call `handle(args)` on
  the objects they are given.
- **No key/value server object.** Nothing answers `GetArgs` or `PutAppendArgs`
  directly. You must write the server around `ShardKVState`, and it must:
  - feed `ShardKVState` the commands in order;
  - poll the controller for new configurations;
  - pull and clean shards using the functions in `shardstore.kv_migration`.
- **No persistence.** Snapshots are returned as bytes; storing them is up to
  the caller.
- **No command-line program.**
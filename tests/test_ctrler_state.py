from collections import Counter

import pytest

from shardstore.ctrler_common import (
    NSHARDS,
    Config,
    Err,
    JoinArgs,
    LeaveArgs,
    QueryArgs,
)
from shardstore.ctrler_state import (
    OpKind,
    ShardController,
    UnknownGroupError,
    gid_to_shards,
    make_op,
    most_and_fewest,
)


def check(groups, config):
    assert len(config.groups) == len(groups)
    for g in groups:
        assert g in config.groups
    if groups:
        for g in config.shards:
            assert g in config.groups
    counts = Counter(config.shards)
    values = [counts[g] for g in config.groups]
    if values:
        assert max(values) <= min(values) + 1


def test_basic_join_leave_and_history():
    ctrl = ShardController()
    history = [ctrl.query(-1)]
    check([], ctrl.query(-1))

    ctrl.join({1: ["x", "y", "z"]})
    check([1], ctrl.query(-1))
    history.append(ctrl.query(-1))

    ctrl.join({2: ["a", "b", "c"]})
    check([1, 2], ctrl.query(-1))
    history.append(ctrl.query(-1))

    latest = ctrl.query(-1)
    assert latest.groups[1] == ["x", "y", "z"]
    assert latest.groups[2] == ["a", "b", "c"]

    ctrl.leave([1])
    check([2], ctrl.query(-1))
    history.append(ctrl.query(-1))

    ctrl.leave([2])
    last = ctrl.query(-1)
    history.append(last)
    assert last.shards == [0] * NSHARDS

    for config in history:
        assert ctrl.query(config.num) == config


def test_move():
    ctrl = ShardController()
    ctrl.join({503: ["3a", "3b", "3c"]})
    ctrl.join({504: ["4a", "4b", "4c"]})
    for i in range(NSHARDS):
        before = ctrl.query(-1)
        target = 503 if i < NSHARDS // 2 else 504
        ctrl.move(i, target)
        if before.shards[i] != target:
            assert ctrl.query(-1).num > before.num
    final = ctrl.query(-1)
    for i in range(NSHARDS):
        assert final.shards[i] == (503 if i < NSHARDS // 2 else 504)


def test_move_to_unknown_group_raises():
    ctrl = ShardController()
    ctrl.join({1: ["x"]})
    with pytest.raises(UnknownGroupError):
        ctrl.move(0, 99)
    assert len(ctrl.configs) == 2


def _ten_groups(ctrl):
    gids = [xi * 10 + 100 for xi in range(10)]
    for gid in gids:
        ctrl.join({gid + 1000: [f"s{gid}a"]})
        ctrl.join({gid: [f"s{gid}b"]})
        ctrl.leave([gid + 1000])
    check(gids, ctrl.query(-1))
    return gids


def test_minimal_transfers_after_joins_and_leaves():
    ctrl = ShardController()
    gids = _ten_groups(ctrl)
    c1 = ctrl.query(-1)
    for i in range(5):
        gid = 11 + i
        ctrl.join({gid: [f"{gid}a", f"{gid}b", f"{gid}b"]})
    c2 = ctrl.query(-1)
    for gid in gids:
        for j in range(NSHARDS):
            if c2.shards[j] == gid:
                assert c1.shards[j] == gid
    for i in range(5):
        ctrl.leave([11 + i])
    c3 = ctrl.query(-1)
    for gid in gids:
        for j in range(NSHARDS):
            if c2.shards[j] == gid:
                assert c3.shards[j] == gid
    check(gids, c3)


def test_multi_group_join_leave():
    ctrl = ShardController()
    ctrl.join({1: ["x", "y", "z"], 2: ["a", "b", "c"]})
    check([1, 2], ctrl.query(-1))
    ctrl.join({3: ["j", "k", "l"]})
    check([1, 2, 3], ctrl.query(-1))
    latest = ctrl.query(-1)
    assert latest.groups[3] == ["j", "k", "l"]
    ctrl.leave([1, 3])
    check([2], ctrl.query(-1))
    assert ctrl.query(-1).groups[2] == ["a", "b", "c"]


def test_multi_join_leave_and_minimal_transfers():
    ctrl = ShardController()
    gids = [xi + 1000 for xi in range(10)]
    for gid in gids:
        ctrl.join({
            gid: [f"{gid}a", f"{gid}b", f"{gid}c"],
            gid + 1000: [f"{gid + 1000}a"],
            gid + 2000: [f"{gid + 2000}a"],
        })
        ctrl.leave([gid + 1000, gid + 2000])
    check(gids, ctrl.query(-1))

    c1 = ctrl.query(-1)
    ctrl.join({11 + i: [f"{11 + i}a", f"{11 + i}b"] for i in range(5)})
    c2 = ctrl.query(-1)
    ctrl.leave([11 + i for i in range(5)])
    c3 = ctrl.query(-1)
    for gid in gids:
        for j in range(NSHARDS):
            if c2.shards[j] == gid:
                assert c1.shards[j] == gid
                assert c3.shards[j] == gid


def test_duplicate_command_applied_once():
    ctrl = ShardController()
    op = make_op(JoinArgs({1: ["x"]}, client_id=7, command_id=0))
    assert ctrl.apply(op) == (Err.OK, None)
    assert ctrl.apply(op) == (Err.OK, None)
    assert len(ctrl.configs) == 2
    assert ctrl.is_duplicated(OpKind.JOIN, 7, 0)
    assert not ctrl.is_duplicated(OpKind.JOIN, 7, 1)
    assert not ctrl.is_duplicated(OpKind.QUERY, 7, 0)


def test_handle_deduplicates_requests():
    ctrl = ShardController()
    args = JoinArgs({1: ["x"]}, client_id=3, command_id=0)
    assert ctrl.handle(args).err is Err.OK
    reply = ctrl.handle(args)
    assert reply.err is Err.OK and reply.wrong_leader is False
    assert len(ctrl.configs) == 2


def test_follower_refuses_changes_but_serves_known_configs():
    ctrl = ShardController(leader=False)
    reply = ctrl.handle(LeaveArgs([1], client_id=1, command_id=0))
    assert reply.wrong_leader is True
    assert reply.err is Err.WRONG_LEADER
    known = ctrl.handle(QueryArgs(0))
    assert known.err is Err.OK and known.config == Config()
    latest = ctrl.handle(QueryArgs(-1))
    assert latest.wrong_leader is True


def test_query_through_handle_returns_latest():
    ctrl = ShardController()
    ctrl.join({1: ["x"]})
    reply = ctrl.handle(QueryArgs(-1))
    assert reply.config.num == 1
    assert reply.config.shards == [1] * NSHARDS


def test_gid_to_shards_without_groups():
    assert gid_to_shards(Config()) == {0: list(range(NSHARDS))}


def test_gid_to_shards_assigns_orphans():
    config = Config(groups={1: ["x"], 2: ["y"]})
    g2s = gid_to_shards(config)
    assert set(g2s) == {1, 2}
    assert sorted(g2s[1] + g2s[2]) == list(range(NSHARDS))
    assert len(g2s[1]) == len(g2s[2])


def test_most_and_fewest_prefers_smallest_gid_on_ties():
    assert most_and_fewest({3: [4, 5, 6], 1: [0, 1, 2], 2: [3]}) == (1, 2)


def test_make_op_rejects_unknown_request():
    with pytest.raises(TypeError):
        make_op("Join")
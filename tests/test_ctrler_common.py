from shardstore.ctrler_common import (
    NSHARDS,
    Config,
    Err,
    JoinReply,
    QueryReply,
    copy_groups,
    format_config,
)


def test_initial_config_assigns_every_shard_to_gid_zero():
    config = Config()
    assert config.num == 0
    assert config.shards == [0] * NSHARDS
    assert config.groups == {}


def test_copy_is_deep():
    original = Config(num=3, shards=[1] * NSHARDS, groups={1: ["x", "y", "z"]})
    duplicate = original.copy()
    assert duplicate == original
    duplicate.groups[1].append("w")
    duplicate.shards[0] = 2
    duplicate.groups[2] = ["a"]
    assert original.groups == {1: ["x", "y", "z"]}
    assert original.shards == [1] * NSHARDS


def test_copy_groups_gives_independent_lists():
    groups = {1: ["x", "y"], 2: ["a"]}
    copied = copy_groups(groups)
    assert copied == groups
    copied[1].append("z")
    assert groups[1] == ["x", "y"]


def test_format_config_lists_every_shard():
    config = Config(num=4, shards=[5] * NSHARDS, groups={5: ["a"]})
    lines = format_config(config).splitlines()
    assert lines[0] == "cf.Num = 4"
    assert len(lines) == NSHARDS + 1
    assert "shard 2 belongs to gid 5" in lines


def test_err_wire_values():
    assert Err("OK") is Err.OK
    assert Err("ErrWrongLeader") is Err.WRONG_LEADER
    assert Err("ErrTimeout") is Err.TIMEOUT
    reply = JoinReply(wrong_leader=True, err=Err("ErrWrongLeader"))
    assert reply.err == "ErrWrongLeader"
    assert reply.wrong_leader is True


def test_query_reply_defaults_to_fresh_config():
    first = QueryReply()
    second = QueryReply()
    first.config.groups[1] = ["x"]
    assert second.config.groups == {}
    assert first.err is Err.OK
    assert first.wrong_leader is False
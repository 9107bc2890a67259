import pytest

from splice.splice_datatypes import (
    Env, Frame, Table, MultiResult, Builtin, CancelToken, ErrorKind,
    ConfigurationError, SpliceRuntimeError, SpliceError, ParseError,
    Literal, BinOp
)


# --- Env ---

def test_env_lookup_walks_parents():
    root = Env()
    root.set_local("x", 1)
    child = Env(parent=root)
    assert child.get("x") == 1
    assert child["x"] == 1
    assert "x" in child
    assert child.get("missing") is None
    assert child.get("missing", 7) == 7
    with pytest.raises(KeyError):
        child["missing"]


def test_env_set_updates_nearest_owner_and_set_local_shadows():
    root = Env()
    root.set_local("x", 1)
    child = Env(parent=root)

    child.set("x", 2)
    assert root.get("x") == 2
    assert "x" not in child.keys()

    child.set_local("x", 3)
    assert child.get("x") == 3
    assert root.get("x") == 2
    assert child.find_owner("x") is child

    child["y"] = 4
    assert child.find_owner("y") is child
    assert not root.has("y")


# --- Frame and cancellation ---

def test_frame_without_global_env_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        Frame(None).require_global_env()


def test_frame_child_shares_context():
    env = Env()
    token = CancelToken()
    frame = Frame(env, location="https://example.com/", cancel_token=token)
    child = frame.child("1 + 1")
    assert child.global_env is env
    assert child.location == "https://example.com/"
    assert child.cancel_token is token
    assert child.source == "1 + 1"


def test_cancel_token_raises_cancelled_runtime_error():
    token = CancelToken()
    frame = Frame(Env(), source="x", cancel_token=token)
    frame.check_cancelled()
    token.cancel("stop")
    with pytest.raises(SpliceRuntimeError) as excinfo:
        frame.check_cancelled()
    err = excinfo.value
    assert err.kind is ErrorKind.CANCELLED
    assert err.cancelled
    assert err.expression == "x"
    assert str(err) == "stop"


def test_error_hierarchy():
    assert issubclass(SpliceRuntimeError, RuntimeError)
    assert issubclass(SpliceRuntimeError, SpliceError)
    assert issubclass(ParseError, SpliceError)
    assert issubclass(ConfigurationError, SpliceError)
    assert not SpliceRuntimeError("boom").cancelled


# --- Table ---

def test_table_length_is_the_sequence_border():
    t = Table.from_list(["a", "b", "c"])
    assert t.length() == 3
    t[5] = "e"
    assert t.length() == 3
    assert Table().length() == 0


def test_table_assigning_nil_removes_the_slot():
    t = Table()
    t["k"] = 1
    t["k"] = None
    assert "k" not in t
    assert len(t) == 0


def test_table_normalises_integral_float_keys():
    t = Table()
    t[2.0] = "two"
    assert t[2] == "two"
    assert list(t.keys()) == [2]


def test_table_nil_key_is_an_error():
    with pytest.raises(SpliceRuntimeError):
        Table()[None] = 1


def test_table_equality_is_identity():
    a = Table.from_list([1])
    b = Table.from_list([1])
    assert a == a
    assert a != b
    assert len({a, b}) == 2


def test_table_from_python_converts_recursively():
    t = Table.from_python({"user": {"name": "Ada"}, "tags": ["x", "y"]})
    assert isinstance(t["user"], Table)
    assert t["user"]["name"] == "Ada"
    assert isinstance(t["tags"], Table)
    assert t["tags"][2] == "y"


def test_multi_result_first():
    assert MultiResult((1, 2)).first() == 1
    assert MultiResult(()).first() is None


@pytest.mark.asyncio
async def test_builtin_awaits_async_functions():
    async def fn(frame, x):
        return x * 2

    frame = Frame(Env())
    assert await Builtin("double", fn).call(frame, 21) == 42
    assert await Builtin("ident", lambda frame, x: x).call(frame, "a") == "a"


def test_nodes_compare_structurally_ignoring_location():
    a = BinOp("+", Literal(1), Literal(2))
    b = BinOp("+", Literal(1), Literal(2))
    b.loc = {"line": 1, "col": 3}
    assert a == b
    assert hash(a) == hash(b)
    assert a != BinOp("-", Literal(1), Literal(2))

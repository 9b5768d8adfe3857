# tests/tools/test_registry.py
import pytest
from pydantic import BaseModel

from common.envelope import ToolResult, UIHint, ok
from tools.registry import ToolName, ToolRegistry, coerce_result, function_tool


class EchoArgs(BaseModel):
    text: str
    times: int = 1


@function_tool(ToolName.lookup_property, description="echo", args=EchoArgs)
async def echo(context, text: str, times: int = 1):
    return ok(text * times, UIHint.CHAT)


@function_tool(ToolName.calculate_route, description="boom")
async def boom(context):
    raise RuntimeError("kaput")


@function_tool(ToolName.find_nearest_place, description="raw")
async def raw(context):
    return {"success": True, "message": "plain dict", "extra_field": 1}


@pytest.fixture
def registry():
    return ToolRegistry("discovery", [echo, boom, raw, echo])


def test_duplicate_registration_is_ignored(registry):
    assert registry.names() == ["lookupProperty", "calculateRoute", "findNearestPlace"]
    assert "lookupProperty" in registry
    assert "sendCode" not in registry
    assert "doesNotExist" not in registry


def test_definitions_are_function_schemas(registry):
    defs = {d["name"]: d for d in registry.definitions()}
    params = defs["lookupProperty"]["parameters"]
    assert defs["lookupProperty"]["type"] == "function"
    assert set(params["properties"]) == {"text", "times"}
    assert params["required"] == ["text"]
    assert defs["calculateRoute"]["parameters"]["properties"] == {}


@pytest.mark.asyncio
async def test_own_tool_runs_with_validated_arguments(registry, ctx):
    res = await registry.invoke("lookupProperty", '{"text": "ab", "times": "2"}', ctx)
    assert res.success is True
    assert res.message == "abab"


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["sendCode", "scheduleVisit", "launchRockets", ""])
async def test_foreign_and_unknown_tools_fall_back(registry, ctx, name):
    res = await registry.invoke(name, "{}", ctx)
    assert res.success is False
    assert res.message is None
    assert res.hint == UIHint.CHAT
    assert res.payload()["suggested_action"]
    assert not res.is_transfer


@pytest.mark.asyncio
async def test_bad_json_and_invalid_arguments_fail(registry, ctx):
    bad = await registry.invoke("lookupProperty", "{not json", ctx)
    assert bad.success is False and "Invalid arguments" in bad.error
    not_object = await registry.invoke("lookupProperty", "[1, 2]", ctx)
    assert not_object.success is False
    missing = await registry.invoke("lookupProperty", "{}", ctx)
    assert missing.success is False


@pytest.mark.asyncio
async def test_exceptions_become_error_envelopes(registry, ctx):
    res = await registry.invoke("calculateRoute", None, ctx)
    assert res.success is False
    assert "RuntimeError" in res.error
    assert "kaput" not in (res.message or "")


@pytest.mark.asyncio
async def test_plain_returns_are_coerced(registry, ctx):
    res = await registry.invoke("findNearestPlace", "", ctx)
    assert isinstance(res, ToolResult)
    assert res.message == "plain dict"
    assert res.payload() == {"extra_field": 1}


def test_coerce_result():
    assert coerce_result(None).success is True
    assert coerce_result("hello").message == "hello"
    assert coerce_result(42).message == "42"
    env = ok("x")
    assert coerce_result(env) is env


def test_tool_name_parse():
    assert ToolName.parse("checkCode") == ToolName.check_code
    assert ToolName.parse(" checkCode ") == ToolName.check_code
    assert ToolName.parse("check_code") is None

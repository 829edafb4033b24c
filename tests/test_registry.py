import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from pydantic import BaseModel

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from mcpterm.errors import DuplicateToolError, ToolExecutionError, ToolValidationError, UnknownToolError
from mcpterm.registry import ToolRegistry
from mcpterm.tools import EchoArgs, default_registry


class _NameArgs(BaseModel):
    name: str


class TestToolRegistry(unittest.IsolatedAsyncioTestCase):
    async def test_add_passes_result_through(self) -> None:
        registry = default_registry()
        self.assertEqual(await registry.invoke("add", {"a": 2, "b": 3}), {"result": 5})
        self.assertEqual(await registry.invoke("add", {"a": 1.5, "b": 2}), {"result": 3.5})

    async def test_echo_passes_result_through(self) -> None:
        registry = default_registry()
        self.assertEqual(await registry.invoke("echo", {"message": "hi"}), {"message": "hi"})

    async def test_unknown_tool_never_calls_a_handler(self) -> None:
        registry = ToolRegistry()
        handler = MagicMock(return_value="x")
        registry.register("known", _NameArgs, handler)
        with self.assertRaises(UnknownToolError):
            await registry.invoke("missing", {"name": "a"})
        handler.assert_not_called()

    async def test_invalid_args_report_fields(self) -> None:
        registry = default_registry()
        with self.assertRaises(ToolValidationError) as ctx:
            await registry.invoke("add", {"a": "2"})
        fields = ctx.exception.fields
        self.assertTrue(any(f.startswith("a") for f in fields))
        self.assertTrue(any(f.startswith("b") for f in fields))
        self.assertEqual(ctx.exception.details["fields"], fields)

    async def test_missing_args_treated_as_empty_object(self) -> None:
        registry = default_registry()
        with self.assertRaises(ToolValidationError):
            await registry.invoke("echo", None)

    async def test_handler_failure_becomes_execution_error(self) -> None:
        registry = ToolRegistry()

        def boom(args: _NameArgs) -> str:
            raise ValueError(f"bad {args.name}")

        registry.register("boom", _NameArgs, boom)
        with self.assertRaises(ToolExecutionError) as ctx:
            await registry.invoke("boom", {"name": "x"})
        self.assertIn("bad x", str(ctx.exception))
        self.assertEqual(ctx.exception.details["exception"], "ValueError")

    async def test_sync_and_async_handlers(self) -> None:
        registry = ToolRegistry()

        @registry.tool("upper", _NameArgs)
        def upper(args: _NameArgs) -> str:
            """Upper-case a name."""
            return args.name.upper()

        @registry.tool("lower", _NameArgs, description="Lower-case a name.")
        async def lower(args: _NameArgs) -> str:
            return args.name.lower()

        self.assertEqual(await registry.invoke("upper", {"name": "ab"}), "AB")
        self.assertEqual(await registry.invoke("lower", {"name": "AB"}), "ab")
        self.assertEqual(registry.get("upper").description, "Upper-case a name.")


class TestRegistration(unittest.TestCase):
    def test_duplicate_registration_fails(self) -> None:
        registry = ToolRegistry()
        registry.register("echo", EchoArgs, lambda args: args)
        with self.assertRaises(DuplicateToolError):
            registry.register("echo", EchoArgs, lambda args: args)
        self.assertEqual(len(registry), 1)

    def test_default_registry_lists_builtin_tools(self) -> None:
        registry = default_registry()
        self.assertEqual(registry.names(), ["echo", "add"])
        self.assertIn("echo", registry)
        definitions = {tool["name"]: tool for tool in registry.list_tools()}
        self.assertIn("message", definitions["echo"]["inputSchema"]["properties"])
        self.assertEqual(set(definitions["add"]["inputSchema"]["required"]), {"a", "b"})
        self.assertTrue(definitions["add"]["description"])

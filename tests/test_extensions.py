import io
import textwrap

import pytest

from extensions import (
    BFExtensionError,
    CommandSpec,
    ExtensionAPI,
    build_default_services,
    load_extension_module,
    load_runtime_services,
)
from instructions import Increment
from interpreter import BFRuntimeError, Interpreter
from parser import ParserMode


def run(source, services):
    interp = Interpreter.from_source(source, mode=ParserMode.COMMAND, services=services)
    out = io.BytesIO()
    interp.run(io.BytesIO(), out)
    return interp, out.getvalue()


@pytest.fixture
def api():
    services = build_default_services()
    return ExtensionAPI(services=services, ext_name="test")


class TestCommands:
    def test_registered_command_runs(self, api):
        @api.command("poke", 1, 1)
        def poke(interp, args):
            interp.append_instructions([Increment(int(args[0]))])

        interp, _ = run("#poke 4;", api._services)
        assert interp.cells[0] == 4

    def test_builtins_are_sealed(self, api):
        with pytest.raises(BFExtensionError):
            api.register_command("include", lambda interp, args: None)
        with pytest.raises(BFExtensionError):
            api.register_command("CLEAR", lambda interp, args: None)

    def test_duplicates_rejected(self, api):
        api.register_command("noop", lambda interp, args: None)
        with pytest.raises(BFExtensionError):
            api.register_command("noop", lambda interp, args: None)

    def test_names_must_be_lower_case_words(self, api):
        registry = api._services.commands
        with pytest.raises(BFExtensionError):
            registry.add(CommandSpec(name="Loud", handler=lambda i, a: None))
        with pytest.raises(BFExtensionError):
            registry.add(CommandSpec(name="two words", handler=lambda i, a: None))

    def test_builtins_installed_once_per_services(self):
        services = build_default_services()
        Interpreter(services=services)
        Interpreter(services=services)
        assert {"include", "clear"} <= set(services.commands.names())

    def test_argument_bounds(self):
        spec = CommandSpec(name="x", handler=lambda i, a: None, min_args=1, max_args=2)
        assert not spec.accepts(0)
        assert spec.accepts(2)
        assert not spec.accepts(3)


class TestHooks:
    def test_events(self, api):
        seen = []
        api.on_event("program_start", lambda interp: seen.append("start"))
        api.on_event("before_command", lambda interp, name, args: seen.append(("before", name)))
        api.on_event("after_command", lambda interp, name, args: seen.append(("after", name)))
        api.on_event("program_end", lambda interp, code: seen.append("end"))
        run("+#clear;", api._services)
        assert seen == ["start", ("before", "clear"), ("after", "clear"), "end"]

    def test_listeners_run_in_registration_order(self, api):
        seen = []
        api.on_event("program_end", lambda interp, code: seen.append("first"))
        api.on_event("program_end", lambda interp, code: seen.append("second"))
        run("+", api._services)
        assert seen == ["first", "second"]

    def test_unknown_event(self, api):
        with pytest.raises(BFExtensionError):
            api.on_event("every_step", lambda interp: None)

    def test_on_error(self, api):
        seen = []
        api.on_event("on_error", lambda interp, error: seen.append(type(error).__name__))
        with pytest.raises(BFRuntimeError):
            run("#nope;", api._services)
        assert seen == ["BFUnsupportedCommandError"]

    def test_failing_hook_is_wrapped(self, api):
        def boom(interp, code):
            raise ValueError("boom")

        api.on_event("program_end", boom)
        with pytest.raises(BFRuntimeError) as info:
            run("+", api._services)
        assert info.value.rule == "EXT"
        assert "boom" in info.value.message


class TestLoading:
    def _write_extension(self, tmp_path, name="double.py", body=None):
        path = tmp_path / name
        path.write_text(body or textwrap.dedent(
            """
            from instructions import Increment

            BRAINRUST_EXTENSION_NAME = "double"

            def brainrust_register(ext):
                @ext.command("double", max_args=0)
                def double(interp, args):
                    value = interp.cells[interp.pointer]
                    if value:
                        interp.append_instructions([Increment(value)])
            """
        ))
        return str(path)

    def test_load_and_run(self, tmp_path):
        services = load_runtime_services([self._write_extension(tmp_path)])
        assert services.extensions == ["double"]
        interp, _ = run("+++#double;", services)
        assert interp.cells[0] == 6

    def test_same_file_name_in_two_directories(self, tmp_path):
        first = tmp_path / "a"
        second = tmp_path / "b"
        first.mkdir()
        second.mkdir()
        self._write_extension(first)
        self._write_extension(
            second, body="def brainrust_register(ext):\n    ext.register_command('half', lambda interp, args: None)\n"
        )
        services = load_runtime_services([str(first / "double.py"), str(second / "double.py")])
        assert {"double", "half"} <= set(services.commands.names())
        assert services.extensions == ["double", "double"]

    def test_missing_register(self, tmp_path):
        path = self._write_extension(tmp_path, "empty.py", "X = 1\n")
        with pytest.raises(BFExtensionError):
            load_runtime_services([path])

    def test_api_version_mismatch(self, tmp_path):
        path = self._write_extension(
            tmp_path, "future.py", "BRAINRUST_EXTENSION_API_VERSION = 99\ndef brainrust_register(ext):\n    pass\n"
        )
        with pytest.raises(BFExtensionError):
            load_runtime_services([path])

    def test_missing_module(self, tmp_path):
        with pytest.raises(BFExtensionError):
            load_extension_module(str(tmp_path / "nope.py"))

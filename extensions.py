"""Command registry for ``#name args;`` instructions and extension loading.

An extension is a Python file defining ``brainrust_register(ext)``. It gets an
:class:`ExtensionAPI` and may add commands or listen to interpreter events.
"""

from __future__ import annotations

import hashlib
import importlib.util
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence


EXTENSION_API_VERSION = 1

BUILTIN_COMMANDS = ("include", "clear")

EVENTS = frozenset({"program_start", "program_end", "on_error", "before_command", "after_command"})


class BFExtensionError(Exception):
    pass


CommandHandler = Callable[[Any, List[str]], None]


@dataclass(frozen=True)
class CommandSpec:
    name: str
    handler: CommandHandler
    min_args: int = 0
    max_args: Optional[int] = None
    origin: str = "builtin"
    doc: str = ""

    def accepts(self, supplied: int) -> bool:
        if supplied < self.min_args:
            return False
        return self.max_args is None or supplied <= self.max_args

    def arity(self) -> str:
        if self.max_args is None:
            return f"at least {self.min_args}"
        if self.max_args == self.min_args:
            return str(self.min_args)
        return f"{self.min_args} to {self.max_args}"


class CommandRegistry:
    """Names are matched lower-case, the way ``Command.name`` reports them.

    The built-in names are reserved up front: only the interpreter may bind
    them, so an extension cannot shadow ``#include`` or ``#clear``.
    """

    def __init__(self) -> None:
        self._commands: Dict[str, CommandSpec] = {}

    def add(self, spec: CommandSpec, *, builtin: bool = False) -> None:
        name = spec.name
        if not name or name != name.lower() or any(ch.isspace() or ch == ";" for ch in name):
            raise BFExtensionError(f"Invalid command name {name!r}: use one lower-case word")
        if name in BUILTIN_COMMANDS and not builtin:
            raise BFExtensionError(f"#{name} is a built-in command and cannot be redefined")
        existing = self._commands.get(name)
        if existing is not None:
            raise BFExtensionError(f"#{name} is already provided by {existing.origin}")
        self._commands[name] = spec

    def lookup(self, name: str) -> Optional[CommandSpec]:
        return self._commands.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._commands

    def names(self) -> List[str]:
        return sorted(self._commands)


@dataclass
class RuntimeServices:
    commands: CommandRegistry = field(default_factory=CommandRegistry)
    listeners: Dict[str, List[Callable[..., None]]] = field(default_factory=dict)
    extensions: List[str] = field(default_factory=list)

    def notify(self, event: str, *args: Any) -> None:
        for listener in self.listeners.get(event, ()):
            listener(*args)


class ExtensionAPI:
    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self._ext_name = ext_name

    def register_command(
        self,
        name: str,
        handler: CommandHandler,
        *,
        min_args: int = 0,
        max_args: Optional[int] = None,
        doc: str = "",
    ) -> None:
        self._services.commands.add(
            CommandSpec(name=name, handler=handler, min_args=min_args, max_args=max_args, origin=self._ext_name, doc=doc)
        )

    def command(self, name: str, min_args: int = 0, max_args: Optional[int] = None, *, doc: str = ""):
        def deco(fn: CommandHandler) -> CommandHandler:
            self.register_command(name, fn, min_args=min_args, max_args=max_args, doc=doc)
            return fn

        return deco

    def on_event(self, event: str, handler: Callable[..., None]) -> Callable[..., None]:
        if event not in EVENTS:
            raise BFExtensionError(f"Unknown event '{event}' (known: {', '.join(sorted(EVENTS))})")
        self._services.listeners.setdefault(event, []).append(handler)
        return handler


def load_extension_module(path: str) -> Any:
    if not os.path.isfile(path):
        raise BFExtensionError(f"Extension not found: {path}")
    # Distinct paths get distinct module names even when the file names match.
    digest = hashlib.sha256(os.path.abspath(path).encode("utf-8")).hexdigest()[:12]
    stem = os.path.splitext(os.path.basename(path))[0]
    spec = importlib.util.spec_from_file_location(f"brainrust_ext_{stem}_{digest}", path)
    if spec is None or spec.loader is None:
        raise BFExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)  # type: ignore[union-attr]
    return module


def build_default_services() -> RuntimeServices:
    return RuntimeServices()


def load_runtime_services(paths: Sequence[str]) -> RuntimeServices:
    services = build_default_services()
    for path in paths:
        module = load_extension_module(path)
        api_version = getattr(module, "BRAINRUST_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
        if api_version != EXTENSION_API_VERSION:
            raise BFExtensionError(
                f"Extension {path} requires API {api_version}, host supports {EXTENSION_API_VERSION}"
            )
        register = getattr(module, "brainrust_register", None)
        if not callable(register):
            raise BFExtensionError(f"Extension {path} must define callable brainrust_register(ext)")
        ext_name = str(getattr(module, "BRAINRUST_EXTENSION_NAME", os.path.splitext(os.path.basename(path))[0]))
        register(ExtensionAPI(services=services, ext_name=ext_name))
        services.extensions.append(ext_name)
    return services

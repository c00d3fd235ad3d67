from __future__ import annotations

import asyncio
import logging
import re
import sys
import types
from dataclasses import dataclass
from typing import Any, Callable, Optional

from hotloop.hotloop_config import HotloopConfig
from hotloop.hotloop_console import Console
from hotloop.hotloop_errors import CompilationError, InstantiationError, ResourceNotFoundError
from hotloop.hotloop_resource import read_text
from hotloop.hotloop_runtime import register_source

logger = logging.getLogger(__name__)

ReloadHook = Callable[[Any], None]


@dataclass(frozen=True)
class CodeUnit:
    """One consistent load: the text, the module compiled from it and the instance built from that module."""
    text: str
    artifact: types.ModuleType
    instance: Any


def _module_name(resource_id: str) -> str:
    # Stable, importable-looking name for the synthetic module
    cleaned = re.sub(r"\W+", "_", resource_id).strip("_") or "unit"
    return f"hotloop_dynamic.{cleaned}"


class DynamicCode:
    """
    An always-current instance of a class compiled from a resource.

    Every get_instance() re-reads the resource. Identical text returns the
    cached instance; different text compiles a new module, constructs a new
    instance with no arguments and swaps both in at once. A failed compile or
    construction leaves the previous load in place.
    """

    def __init__(self, resource_id: str, *, class_name: Optional[str] = None,
                 on_reload: Optional[ReloadHook] = None, config: Optional[HotloopConfig] = None,
                 base_dir: Optional[str] = None):
        self.resource_id = resource_id
        self.class_name = class_name
        self.on_reload = on_reload
        self.config = config or HotloopConfig()
        self.base_dir = base_dir
        self.reload_count = 0
        self._unit: Optional[CodeUnit] = None

    @classmethod
    async def open(cls, resource_id: str, **kwargs) -> 'DynamicCode':
        """Create a DynamicCode, failing with ResourceNotFoundError right away if the resource is missing."""
        dc = cls(resource_id, **kwargs)
        await dc._read()
        return dc

    def set_on_reload(self, callback: Optional[ReloadHook]) -> None:
        self.on_reload = callback

    @property
    def last_loaded_text(self) -> Optional[str]:
        return self._unit.text if self._unit else None

    @property
    def compiled_artifact(self) -> Optional[types.ModuleType]:
        return self._unit.artifact if self._unit else None

    @property
    def instance(self) -> Any:
        return self._unit.instance if self._unit else None

    async def _read(self) -> str:
        return await read_text(self.resource_id, self.config, base_dir=self.base_dir)

    def _compile(self, text: str) -> types.ModuleType:
        name = _module_name(self.resource_id)
        module = types.ModuleType(name)
        module.__file__ = self.resource_id
        try:
            code = compile(text, self.resource_id, "exec", dont_inherit=True)
        except SyntaxError as e:
            raise CompilationError(self.resource_id, f"SyntaxError: {e.msg} (line {e.lineno})") from e
        register_source(self.resource_id, text)
        # Decorators such as @dataclass look their module up in sys.modules while the body runs
        previous = sys.modules.get(name)
        sys.modules[name] = module
        try:
            exec(code, module.__dict__)
        except Exception as e:
            raise CompilationError(self.resource_id, f"{type(e).__name__} while loading: {e}") from e
        finally:
            if previous is None:
                sys.modules.pop(name, None)
            else:
                sys.modules[name] = previous
        return module

    def _pick_class(self, module: types.ModuleType) -> type:
        if self.class_name is not None:
            cls = module.__dict__.get(self.class_name)
            if not isinstance(cls, type):
                raise CompilationError(self.resource_id, f"no class named {self.class_name!r}")
            return cls
        # First class defined by the source itself; imported classes don't count
        for value in module.__dict__.values():
            if isinstance(value, type) and value.__module__ == module.__name__:
                return value
        raise InstantiationError(self.resource_id, "source defines no class to instantiate")

    def _load(self, text: str) -> CodeUnit:
        module = self._compile(text)
        cls = self._pick_class(module)
        try:
            instance = cls()
        except Exception as e:
            raise InstantiationError(self.resource_id, f"{cls.__name__}() raised {type(e).__name__}: {e}") from e
        return CodeUnit(text=text, artifact=module, instance=instance)

    async def get_instance(self) -> Any:
        text = await self._read()
        current = self._unit
        if current is not None and text == current.text:
            # -> Content is identical, do nothing.
            return current.instance
        unit = self._load(text)
        self._unit = unit
        self.reload_count += 1
        logger.info("Loading class due to new content of '%s'", self.resource_id)
        if self.on_reload is not None:
            self.on_reload(unit.instance)
        return unit.instance


async def watch(code: DynamicCode, method: str, *, interval: Optional[float] = None,
                iterations: Optional[int] = None, console: Optional[Console] = None) -> int:
    """
    Poll `code`, call `method` on the current instance and print what it returns.

    Broken edits and a vanished resource are reported and the last good
    instance keeps being used. Errors raised by the method are reported too;
    polling carries on either way.
    Runs forever unless `iterations` is given; returns the number of polls.
    """
    console = console or Console(code.config)
    delay = code.config.poll_interval if interval is None else interval
    done = 0
    while iterations is None or done < iterations:
        if done:
            await asyncio.sleep(delay)
        done += 1
        try:
            instance = await code.get_instance()
        except (CompilationError, InstantiationError, ResourceNotFoundError) as e:
            console.error(f"{type(e).__name__}: {e}")
            instance = code.instance
            if instance is None:
                continue
        try:
            value = getattr(instance, method)()
            if asyncio.iscoroutine(value):
                value = await value
        except Exception as e:
            console.error(f"{method}() raised {type(e).__name__}: {e}")
            continue
        console.print(str(value))
    return done

from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import Self

from scriptbridge.config import BridgeConfig, load_config
from scriptbridge.conversion import encode
from scriptbridge.facade import ScriptObject
from scriptbridge.host import HostRuntime
from scriptbridge.ownership import ExclusiveHandle
from scriptbridge.runtime import Runtime


@dataclass(kw_only=True, slots=True, weakref_slot=True, eq=False)
class Session:
    """
    The initialize/teardown bracket around one runtime.

    Every handle and :class:`ScriptObject` created through a session must be
    released before :meth:`teardown`; what happens to the stragglers is decided
    by the runtime's ``LeakPolicy``.
    """

    runtime: Runtime
    config: BridgeConfig = field(default_factory=BridgeConfig)

    @classmethod
    def from_config(cls, config: BridgeConfig | None = None) -> Self:
        """A session over a fresh :class:`HostRuntime` configured by ``config``."""
        if config is None:
            config = BridgeConfig()
        runtime = HostRuntime(
            module_prefix=config.module_prefix, leak_policy=config.leak_policy
        )
        return cls(runtime=runtime, config=config)

    @classmethod
    def from_file(cls, config_path: str | PathLike[str]) -> Self:
        return cls.from_config(load_config(Path(config_path)))

    def initialize(self) -> None:
        self.runtime.initialize()

    def teardown(self) -> None:
        self.runtime.teardown()

    def __enter__(self) -> Self:
        self.initialize()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.teardown()

    def resolve_script(self, script_path: str | PathLike[str]) -> Path:
        """
        Resolve a script path against the configured search paths.

        Absolute paths and paths that exist relative to the working directory
        are returned unchanged; otherwise the first search path containing the
        script wins. When nothing matches, the path is returned unchanged and
        loading it reports the failure.
        """
        path = Path(script_path)
        if path.is_absolute() or path.exists():
            return path
        for directory in self.config.search_paths:
            candidate = directory / path
            if candidate.exists():
                return candidate
        return path

    def load(self, script_path: str | PathLike[str]) -> ScriptObject:
        return ScriptObject.from_script(self, script_path)

    def encode(self, value: object) -> ExclusiveHandle:
        return encode(self.runtime, value)

"""Tool sources and the protocols their clients implement.

A source is a named bundle of tools. Remote sources are reached through a
client created on demand by a :data:`RemoteClientFactory`; local sources
carry an in-process registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Mapping, Protocol, Sequence, Union, runtime_checkable

__all__ = [
    "SourceKind",
    "Source",
    "RemoteToolClient",
    "RemoteClientFactory",
    "LocalToolRegistry",
]

SourceKind = Literal["remote", "local"]


@runtime_checkable
class RemoteToolClient(Protocol):
    """Client for a remote tool server.

    ``list_tools`` returns descriptors exposing ``name``, ``description`` and
    ``inputSchema`` either as attributes or as mapping keys.
    """

    async def list_tools(self) -> Sequence[Any]:
        ...

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> Any:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class LocalToolRegistry(Protocol):
    """In-process registry backing a local source."""

    @property
    def registered_tools(self) -> Mapping[str, Any]:
        ...

    async def ensure_initialized(self) -> None:
        ...


@dataclass(slots=True, frozen=True)
class Source:
    """A configured tool source.

    Attributes:
        slug: Stable identifier; prefixes every synthesized tool name.
        kind: ``remote`` for out-of-process servers, ``local`` for registries.
        name: Display name.
        config: Connection settings handed to the client factory.
        registry: Tool registry for local sources.
    """

    slug: str
    kind: SourceKind = "remote"
    name: str = ""
    config: Mapping[str, Any] = field(default_factory=dict)
    registry: LocalToolRegistry | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.slug

    @property
    def is_local(self) -> bool:
        return self.kind == "local"


RemoteClientFactory = Callable[[Source], Union[Awaitable[RemoteToolClient], RemoteToolClient]]

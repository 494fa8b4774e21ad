"""Adapter registry and discovery."""

from pathlib import Path
from typing import Type

from .base import SessionAdapter, SourceFile

# Registry of all available adapters
_ADAPTERS: dict[str, Type[SessionAdapter]] = {}


def register_adapter(adapter_class: Type[SessionAdapter]) -> Type[SessionAdapter]:
    """Decorator to register an adapter class."""
    _ADAPTERS[adapter_class.name] = adapter_class
    return adapter_class


def normalize_agent_name(name: str) -> str | None:
    """Resolve an agent name or alias ("claude", "claude_code") to its registered name."""
    key = name.strip().lower()
    if key in _ADAPTERS:
        return key
    for adapter_class in _ADAPTERS.values():
        if key in adapter_class.aliases:
            return adapter_class.name
    return None


def get_adapter(name: str, root: Path | None = None) -> SessionAdapter | None:
    """Get an instance of an adapter by name or alias."""
    canonical = normalize_agent_name(name)
    if canonical is None:
        return None
    return _ADAPTERS[canonical](root)


def get_all_adapters(roots: dict[str, Path] | None = None) -> list[SessionAdapter]:
    """Get instances of all registered adapters."""
    resolved = {}
    for key, root in (roots or {}).items():
        resolved[normalize_agent_name(key) or key] = root
    return [cls(resolved.get(name)) for name, cls in _ADAPTERS.items()]


def get_available_adapters(roots: dict[str, Path] | None = None) -> list[SessionAdapter]:
    """Get instances of all adapters whose data directory exists."""
    return [a for a in get_all_adapters(roots) if a.is_available()]


__all__ = [
    "SessionAdapter",
    "SourceFile",
    "register_adapter",
    "normalize_agent_name",
    "get_adapter",
    "get_all_adapters",
    "get_available_adapters",
]

# Import adapters to trigger registration
from . import claude_code  # noqa: F401, E402
from . import codex  # noqa: F401, E402
from . import cursor  # noqa: F401, E402

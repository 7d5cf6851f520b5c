"""KidPoints web API package.

``kidpoints.webapp:app`` is the ASGI entry point; the application module is
imported lazily so the datastore layer can be used on its own.
"""
from __future__ import annotations

from importlib import import_module
from types import ModuleType
from typing import Any, List

from . import persistence as _persistence

_IMPL_MODULE: ModuleType | None = None

persistence = _persistence
__all__: List[str] = list(getattr(_persistence, "__all__", ()))


def _load_impl() -> ModuleType:
    global _IMPL_MODULE
    if _IMPL_MODULE is None:
        _IMPL_MODULE = import_module(".application", __name__)
        module_all = getattr(_IMPL_MODULE, "__all__", ())
        __all__.extend(name for name in module_all if name not in __all__)
    return _IMPL_MODULE


def __getattr__(name: str) -> Any:
    if hasattr(_persistence, name):
        return getattr(_persistence, name)
    return getattr(_load_impl(), name)


def __dir__() -> List[str]:
    return sorted(set(globals()) | set(__all__) | set(dir(_load_impl())))

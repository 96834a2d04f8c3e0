"""Resolution of process type identifiers to process implementations."""

from __future__ import annotations

import importlib
import logging
from typing import Callable, Dict, Optional, TypeVar, Union

from .errors import UnknownProcessType

logger = logging.getLogger(__name__)

ProcessClassT = TypeVar("ProcessClassT", bound=type)


def _qualified_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def _is_process_class(obj: object) -> bool:
    return isinstance(obj, type) and callable(getattr(obj, "build_first_step", None))


class ProcessRegistry:
    """Maps process type identifiers to the classes implementing them.

    Identifiers are either names given at registration time or, for classes
    that were never registered, their dotted import path
    (``package.module.ClassName`` or ``package.module:ClassName``). Dotted
    paths are imported on demand so stored processes stay runnable by any
    driver that can import the defining module.
    """

    def __init__(self) -> None:
        self._by_name: Dict[str, type] = {}

    def register(
        self, cls: Optional[ProcessClassT] = None, *, name: Optional[str] = None
    ) -> Union[ProcessClassT, Callable[[ProcessClassT], ProcessClassT]]:
        """Register a process class, directly or as a decorator."""

        def decorator(target: ProcessClassT) -> ProcessClassT:
            if not _is_process_class(target):
                raise TypeError(
                    f"{target!r} is not a process class (missing build_first_step)"
                )
            type_id = name or _qualified_name(target)
            existing = self._by_name.get(type_id)
            if existing is not None and existing is not target:
                raise ValueError(f"Process type '{type_id}' is already registered")
            self._by_name[type_id] = target
            logger.debug(f"Registered process type {type_id}")
            return target

        if cls is None:
            return decorator
        return decorator(cls)

    def type_id_for(self, cls: type) -> str:
        """Return the identifier under which ``cls`` is stored."""
        for type_id, registered in self._by_name.items():
            if registered is cls:
                return type_id
        return _qualified_name(cls)

    def resolve(self, type_id: str) -> type:
        """Return the process class for ``type_id``.

        Raises:
            UnknownProcessType: If nothing usable is found.
        """
        cls = self._by_name.get(type_id)
        if cls is None:
            cls = self._import(type_id)
        if not _is_process_class(cls):
            raise UnknownProcessType(type_id, "not a process class")
        return cls

    @staticmethod
    def _import(type_id: str) -> object:
        if ":" in type_id:
            module_name, _, attr_path = type_id.partition(":")
        else:
            module_name, _, attr_path = type_id.rpartition(".")
        if not module_name or not attr_path:
            raise UnknownProcessType(type_id)
        try:
            obj: object = importlib.import_module(module_name)
        except ImportError as exc:
            raise UnknownProcessType(type_id, str(exc)) from exc
        for attr in attr_path.split("."):
            try:
                obj = getattr(obj, attr)
            except AttributeError as exc:
                raise UnknownProcessType(type_id, str(exc)) from exc
        return obj

    def __contains__(self, type_id: str) -> bool:
        return type_id in self._by_name


# Default registry used by managers that are not given their own.
REGISTRY = ProcessRegistry()


def register_process(
    cls: Optional[ProcessClassT] = None, *, name: Optional[str] = None
) -> Union[ProcessClassT, Callable[[ProcessClassT], ProcessClassT]]:
    """Register ``cls`` in the default ``REGISTRY``."""
    return REGISTRY.register(cls, name=name)


__all__ = ["ProcessRegistry", "REGISTRY", "register_process"]

"""Process-lifetime cache of parsed source maps keyed by generated path."""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .resolver import MappingResolver, SourceMapResolver

__all__ = ["MapStore", "ResolverFactory"]

LOGGER = logging.getLogger(__name__)

ResolverFactory = Callable[[Any, str], MappingResolver]


class MapStore:
    """Holds one mapping resolver per generated file.

    Entries are only added through :meth:`register` and are never evicted; the
    caller owns the store's lifetime. A lock guards the table so remapping may
    run on several threads while maps are still being registered.
    """

    def __init__(self, resolver_factory: Optional[ResolverFactory] = None) -> None:
        self._factory: ResolverFactory = resolver_factory or SourceMapResolver.from_payload
        self._resolvers: Dict[str, MappingResolver] = {}
        self._lock = threading.Lock()

    def register(self, generated_path: str | Path, payload: Any) -> MappingResolver:
        """Parse ``payload`` and store it for ``generated_path`` (last write wins).

        Raises :class:`~remapcov.sourcemap.resolver.MalformedMapError` when the
        payload cannot be parsed; the store is left unchanged in that case.
        """

        key = self._normalise_path(generated_path)
        resolver = self._factory(payload, key)
        with self._lock:
            replaced = key in self._resolvers
            self._resolvers[key] = resolver
        LOGGER.debug("%s source map for %s", "Replaced" if replaced else "Registered", key)
        return resolver

    def lookup(self, generated_path: str | Path) -> Optional[MappingResolver]:
        """Return the resolver registered for ``generated_path`` if any."""

        key = self._normalise_path(generated_path)
        with self._lock:
            return self._resolvers.get(key)

    def paths(self) -> List[str]:
        """Return the generated paths that currently have a map."""

        with self._lock:
            return sorted(self._resolvers)

    def clear(self) -> None:
        with self._lock:
            self._resolvers.clear()

    def __contains__(self, generated_path: object) -> bool:
        if not isinstance(generated_path, (str, Path)):
            return False
        return self.lookup(generated_path) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._resolvers)

    @staticmethod
    def _normalise_path(path: str | Path) -> str:
        if isinstance(path, Path):
            return path.as_posix()
        return os.fspath(path)

"""Resource exporter protocol and registry.

A resource exporter knows how to extract records for one resource type
(e.g. ``donations``). It is the only component that interprets filters;
the lifecycle engine passes them through untouched.
"""

import asyncio
import importlib
from collections.abc import AsyncIterator, Callable, Iterable, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from bulk_export.lib.export_lifecycle import UnknownResourceTypeError

RecordSource = Callable[[Mapping[str, Any]], Iterable[dict[str, Any]]]


@runtime_checkable
class ResourceExporter(Protocol):
    """Extracts records for a resource type in batches."""

    columns: Sequence[str] | None

    async def count(self, filters: Mapping[str, Any]) -> int:
        """Return the known or estimated number of records for ``filters``."""
        ...

    def iter_batches(self, filters: Mapping[str, Any], batch_size: int) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield the records for ``filters`` in lists of at most ``batch_size``."""
        ...


class IterableExporter:
    """Exporter backed by a plain iterable or a ``filters -> records`` callable.

    Useful for small resource types, fixtures, and tests. The source is
    re-evaluated for every call, so it must be safe to iterate repeatedly.
    """

    def __init__(
        self,
        source: RecordSource | Iterable[dict[str, Any]],
        columns: Sequence[str] | None = None,
    ) -> None:
        self._source = source
        self.columns = list(columns) if columns else None

    def _records(self, filters: Mapping[str, Any]) -> Iterable[dict[str, Any]]:
        if callable(self._source):
            return self._source(filters)
        return self._source

    async def count(self, filters: Mapping[str, Any]) -> int:
        return sum(1 for _ in self._records(filters))

    async def iter_batches(self, filters: Mapping[str, Any], batch_size: int) -> AsyncIterator[list[dict[str, Any]]]:
        batch: list[dict[str, Any]] = []
        for record in self._records(filters):
            batch.append(record)
            if len(batch) >= batch_size:
                yield batch
                batch = []
                await asyncio.sleep(0)
        if batch:
            yield batch


class ExporterRegistry:
    """Maps resource-type tags to exporters."""

    def __init__(self, exporters: Mapping[str, ResourceExporter] | None = None) -> None:
        self._exporters: dict[str, ResourceExporter] = dict(exporters or {})

    def register(self, resource_type: str, exporter: ResourceExporter) -> None:
        self._exporters[resource_type] = exporter

    def get(self, resource_type: str) -> ResourceExporter:
        """Return the exporter for ``resource_type``.

        Raises:
            UnknownResourceTypeError: If none is registered.
        """
        try:
            return self._exporters[resource_type]
        except KeyError:
            raise UnknownResourceTypeError(resource_type) from None

    def __contains__(self, resource_type: object) -> bool:
        return resource_type in self._exporters

    @property
    def resource_types(self) -> list[str]:
        return sorted(self._exporters)

    @classmethod
    def from_import_paths(cls, paths: Mapping[str, str]) -> "ExporterRegistry":
        """Build a registry from ``{resource_type: "package.module:attr"}``.

        Classes and zero-argument factories are called; other objects are
        registered as-is.
        """
        registry = cls()
        for resource_type, target in paths.items():
            module_name, _, attr = target.partition(":")
            if not attr:
                msg = f"Exporter path must look like 'module:attr', got {target!r}"
                raise ValueError(msg)
            obj = getattr(importlib.import_module(module_name), attr)
            is_factory = isinstance(obj, type) or (callable(obj) and not isinstance(obj, ResourceExporter))
            exporter = obj() if is_factory else obj
            registry.register(resource_type, exporter)
            logger.debug(f"Registered exporter for {resource_type} from {target}")
        return registry

"""Tests for resource exporters and the exporter registry."""

import pytest

from bulk_export.lib.export_lifecycle import UnknownResourceTypeError
from bulk_export.lib.exporter import ExporterRegistry, IterableExporter, ResourceExporter

RECORDS = [{"id": i, "kind": "odd" if i % 2 else "even"} for i in range(1, 8)]

sample_exporter = IterableExporter(RECORDS, columns=["id"])


class SampleExporter(IterableExporter):
    def __init__(self) -> None:
        super().__init__(RECORDS)


def by_kind(filters: dict) -> list[dict]:
    return [r for r in RECORDS if r["kind"] == filters.get("kind", r["kind"])]


class TestIterableExporter:
    @pytest.mark.asyncio
    async def test_count_and_batches(self) -> None:
        exporter = IterableExporter(RECORDS)
        assert await exporter.count({}) == 7

        batches = [batch async for batch in exporter.iter_batches({}, 3)]
        assert [len(b) for b in batches] == [3, 3, 1]

    @pytest.mark.asyncio
    async def test_callable_source_receives_filters(self) -> None:
        exporter = IterableExporter(by_kind)
        assert await exporter.count({"kind": "odd"}) == 4
        batches = [batch async for batch in exporter.iter_batches({"kind": "even"}, 10)]
        assert [r["id"] for r in batches[0]] == [2, 4, 6]

    @pytest.mark.asyncio
    async def test_empty_source_yields_nothing(self) -> None:
        exporter = IterableExporter([])
        assert [batch async for batch in exporter.iter_batches({}, 5)] == []

    def test_satisfies_protocol(self) -> None:
        assert isinstance(IterableExporter(RECORDS), ResourceExporter)


class TestExporterRegistry:
    def test_register_and_get(self) -> None:
        registry = ExporterRegistry()
        registry.register("donations", sample_exporter)
        assert registry.get("donations") is sample_exporter
        assert "donations" in registry
        assert registry.resource_types == ["donations"]

    def test_unknown_resource_type(self) -> None:
        with pytest.raises(UnknownResourceTypeError, match="Invalid resource type: campaigns"):
            ExporterRegistry().get("campaigns")

    def test_from_import_paths(self) -> None:
        registry = ExporterRegistry.from_import_paths(
            {
                "instance": f"{__name__}:sample_exporter",
                "class": f"{__name__}:SampleExporter",
            }
        )
        assert registry.get("instance") is sample_exporter
        assert isinstance(registry.get("class"), SampleExporter)

    def test_from_import_paths_requires_attr(self) -> None:
        with pytest.raises(ValueError, match="module:attr"):
            ExporterRegistry.from_import_paths({"donations": "some.module"})

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import threading

import pytest

from asbuilt_router.destinations import (
    ArchiveAdapter,
    DestinationAdapterRegistry,
    EmailAdapter,
    GisAdapter,
    OracleAdapter,
)
from asbuilt_router.policy.section_types import Destination
from asbuilt_router.services.blob_store import InMemoryBlobStore
from asbuilt_router.settings import load_settings


def _settings(monkeypatch: pytest.MonkeyPatch):
    for name in (
        "ENVIRONMENT",
        "ORACLE_BASE_URL",
        "GIS_ENDPOINT",
        "EMAIL_API_URL",
        "REGULATORY_PORTAL_URL",
        "SHAREPOINT_CLIENT_SECRET",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("EMAIL_COMPLIANCE_RECIPIENTS", "qa@utility.example")
    return load_settings()


def test_registry_builds_each_adapter_once() -> None:
    built: list[str] = []

    def _factory() -> GisAdapter:
        built.append("gis")
        return GisAdapter(endpoint=None)

    registry = DestinationAdapterRegistry({Destination.GIS_ESRI: _factory})

    first = registry.get(Destination.GIS_ESRI)
    second = registry.get("gis_esri")

    assert first is second
    assert built == ["gis"]
    assert registry.cached_destinations() == ["gis_esri"]


@pytest.mark.parametrize("key", ["manual_review", "pending", "not-a-destination", Destination.EMAIL_DO])
def test_registry_falls_back_to_archive(key) -> None:
    registry = DestinationAdapterRegistry({Destination.GIS_ESRI: lambda: GisAdapter(endpoint=None)})

    adapter = registry.get(key)

    assert isinstance(adapter, ArchiveAdapter)
    assert registry.get(Destination.ARCHIVE) is adapter


def test_registry_concurrent_get_constructs_single_instance() -> None:
    built: list[int] = []
    barrier = threading.Barrier(8)

    def _factory() -> GisAdapter:
        built.append(1)
        return GisAdapter(endpoint=None)

    registry = DestinationAdapterRegistry({Destination.GIS_ESRI: _factory})

    def _get(_: int):
        barrier.wait()
        return registry.get(Destination.GIS_ESRI)

    with ThreadPoolExecutor(max_workers=8) as pool:
        adapters = list(pool.map(_get, range(8)))

    assert len(built) == 1
    assert all(adapter is adapters[0] for adapter in adapters)


def test_registry_from_settings_wires_every_destination(monkeypatch: pytest.MonkeyPatch) -> None:
    blob_store = InMemoryBlobStore()
    registry = DestinationAdapterRegistry.from_settings(_settings(monkeypatch), blob_store=blob_store)

    oracle = registry.get(Destination.ORACLE_EAM)
    email = registry.get(Destination.EMAIL_COMPLIANCE)
    archive = registry.get(Destination.MANUAL_REVIEW)

    assert isinstance(oracle, OracleAdapter)
    assert oracle.module == "eam"
    assert oracle.is_simulated is True
    assert isinstance(email, EmailAdapter)
    assert email.recipients == ("qa@utility.example",)
    assert isinstance(archive, ArchiveAdapter)
    assert archive.blob_store is blob_store
    for destination in Destination:
        if destination in (Destination.MANUAL_REVIEW, Destination.PENDING):
            continue
        assert registry.get(destination).destination in (destination, Destination.ARCHIVE)

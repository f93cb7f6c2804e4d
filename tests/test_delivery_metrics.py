from __future__ import annotations

import threading

from asbuilt_router.telemetry import DeliveryMetrics, generate_trace_id


def test_delivery_metrics_counts_events_per_destination() -> None:
    metrics = DeliveryMetrics()

    metrics.increment(destination="oracle_ppm", event="success")
    metrics.increment(destination="oracle_ppm", event="success")
    metrics.increment(destination="gis_esri", event="failure")

    assert metrics.snapshot() == {
        "oracle_ppm": {"success": 2},
        "gis_esri": {"failure": 1},
    }


def test_delivery_metrics_snapshot_is_a_copy() -> None:
    metrics = DeliveryMetrics()
    metrics.increment(destination="archive", event="success")

    snapshot = metrics.snapshot()
    snapshot["archive"]["success"] = 99

    assert metrics.snapshot() == {"archive": {"success": 1}}


def test_delivery_metrics_is_thread_safe() -> None:
    metrics = DeliveryMetrics()

    def _worker() -> None:
        for _ in range(500):
            metrics.increment(destination="email_compliance", event="retry")

    threads = [threading.Thread(target=_worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert metrics.snapshot()["email_compliance"]["retry"] == 2000


def test_generate_trace_id_is_unique_hex() -> None:
    first = generate_trace_id()
    second = generate_trace_id()

    assert first != second
    assert len(first) == 32
    int(first, 16)

"""Tests for flush_coordinator.py module."""

import logging
import threading
import time

import psycopg2

from conftest import FakeHost, FakeStore
from flush_coordinator import FlushCoordinator
from flusher import Flusher
from positions import Position, Region, SampleRecord
from region_buffer import RegionBuffer


def rec(agent, x, z, region=Region.PRIMARY):
    return SampleRecord(agent, Position(x, z, region))


def make_coordinator(host=None, store=None):
    host = host or FakeHost()
    store = store if store is not None else FakeStore()
    buffers = RegionBuffer()
    coordinator = FlushCoordinator(host, buffers, Flusher(store))
    return host, store, buffers, coordinator


class TestFlushDispatch:
    def test_empty_buffers_make_no_store_calls(self):
        host, store, _, coordinator = make_coordinator()

        assert coordinator.run_cycle() is False
        host.run_pending()

        assert host.pending == []
        assert store.writes == []
        assert not coordinator.in_flight

    def test_non_empty_buffers_are_drained_and_dispatched(self):
        host, store, buffers, coordinator = make_coordinator()
        buffers.append(rec("a", 1, 1))

        assert coordinator.run_cycle() is True
        assert buffers.is_empty()
        assert coordinator.in_flight
        assert store.writes == []

        host.run_pending()

        assert not coordinator.in_flight
        assert store.history[Region.PRIMARY] == [("a", 1, 1)]

    def test_no_dispatch_while_flush_in_flight(self):
        host, store, buffers, coordinator = make_coordinator()
        buffers.append(rec("a", 1, 1))
        coordinator.run_cycle()

        buffers.append(rec("a", 2, 2))
        assert coordinator.run_cycle() is False
        assert len(host.pending) == 1
        assert len(buffers) == 1

        host.run_pending()
        assert coordinator.run_cycle() is True
        host.run_pending()

        assert store.history[Region.PRIMARY] == [("a", 1, 1), ("a", 2, 2)]

    def test_records_appended_after_drain_wait_for_next_flush(self):
        host, store, buffers, coordinator = make_coordinator()
        buffers.append(rec("a", 1, 1))
        coordinator.run_cycle()
        buffers.append(rec("b", 2, 2))
        host.run_pending()

        assert store.history[Region.PRIMARY] == [("a", 1, 1)]
        assert len(buffers) == 1


class TestFlushFailures:
    def test_store_unreachable_clears_latch_and_loses_batch(self, caplog):
        store = FakeStore()
        store.write_error = psycopg2.OperationalError("could not connect to server")
        host, _, buffers, coordinator = make_coordinator(store=store)
        buffers.append(rec("nidia", 10, 20))

        with caplog.at_level(logging.ERROR):
            coordinator.run_cycle()
            host.run_pending()

        assert "Flush failed for region overworld" in caplog.text
        assert not coordinator.in_flight
        # The drained batch is not put back
        assert buffers.is_empty()
        assert coordinator.run_cycle() is False

    def test_dispatch_failure_releases_latch(self, caplog):
        host, store, buffers, coordinator = make_coordinator()
        host.dispatch_error = RuntimeError("cannot schedule new futures after shutdown")
        buffers.append(rec("a", 1, 1))

        with caplog.at_level(logging.ERROR, logger="flush_coordinator"):
            assert coordinator.run_cycle() is False

        assert not coordinator.in_flight
        assert "1 position(s) lost" in caplog.text
        assert buffers.is_empty()


class TestSingleFlight:
    def test_at_most_one_flush_runs_concurrently(self):
        """Drive the coordinator from one thread while flushes run on others."""
        active = 0
        peak = 0
        lock = threading.Lock()

        class SlowStore(FakeStore):
            def write_region(self, region, history, latest):
                nonlocal active, peak
                with lock:
                    active += 1
                    peak = max(peak, active)
                time.sleep(0.01)
                with lock:
                    active -= 1
                super().write_region(region, history, latest)

        class ThreadHost(FakeHost):
            def __init__(self):
                super().__init__()
                self.threads = []

            def run_async(self, callback):
                t = threading.Thread(target=callback)
                self.threads.append(t)
                t.start()

        host = ThreadHost()
        store = SlowStore()
        buffers = RegionBuffer()
        coordinator = FlushCoordinator(host, buffers, Flusher(store))

        for i in range(200):
            buffers.append(rec("a", i, 0))
            coordinator.run_cycle()
            time.sleep(0.001)

        for t in host.threads:
            t.join(timeout=5)
        coordinator.wait_idle(timeout=5)
        coordinator.run_cycle()
        for t in host.threads:
            t.join(timeout=5)

        assert peak == 1
        assert [x for _, x, _ in store.history[Region.PRIMARY]] == list(range(200))

    def test_wait_idle_returns_when_flush_finishes(self):
        host, _, buffers, coordinator = make_coordinator()
        buffers.append(rec("a", 1, 1))
        coordinator.run_cycle()

        assert coordinator.wait_idle(timeout=0.05) is False

        worker = threading.Thread(target=host.run_pending)
        worker.start()
        assert coordinator.wait_idle(timeout=5) is True
        worker.join(timeout=5)

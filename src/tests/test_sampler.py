"""Tests for sampler.py module."""

import logging

import pytest

from change_detector import ChangeDetector
from conftest import FakeAgent, FakeHost
from positions import Position, Region, RegionClassifier, SampleRecord
from region_buffer import RegionBuffer
from sampler import Sampler


@pytest.fixture
def parts():
    host = FakeHost()
    detector = ChangeDetector()
    buffers = RegionBuffer()
    sampler = Sampler(host, detector, buffers, RegionClassifier())
    return host, detector, buffers, sampler


class TestSamplerChangeDetection:
    """Tests for which samples reach the buffers."""

    def test_first_sample_is_buffered(self, parts):
        host, _, buffers, sampler = parts
        host.agents = [FakeAgent("nidia", 10, 20)]

        assert sampler.tick() == 1
        assert buffers.drain() == {
            Region.PRIMARY: [SampleRecord("nidia", Position(10, 20, Region.PRIMARY))]
        }

    def test_unchanged_position_is_not_buffered(self, parts):
        host, _, buffers, sampler = parts
        agent = FakeAgent("nidia", 10, 20)
        host.agents = [agent]

        sampler.tick()
        assert sampler.tick() == 0
        agent.x = 15
        assert sampler.tick() == 1

        drained = buffers.drain()[Region.PRIMARY]
        assert [(r.position.x, r.position.z) for r in drained] == [(10, 20), (15, 20)]

    def test_sub_block_movement_is_not_a_change(self, parts):
        host, _, buffers, sampler = parts
        agent = FakeAgent("nidia", 10.2, 20.7)
        host.agents = [agent]

        sampler.tick()
        agent.x, agent.z = 10.9, 20.1
        assert sampler.tick() == 0
        assert len(buffers) == 1

    def test_region_only_change_is_not_buffered(self, parts):
        host, _, buffers, sampler = parts
        agent = FakeAgent("nidia", 10, 20, "world")
        host.agents = [agent]

        sampler.tick()
        agent.world = "world_nether"
        assert sampler.tick() == 0
        assert buffers.size(Region.SECONDARY) == 0

    def test_samples_go_to_classified_region(self, parts):
        host, _, buffers, sampler = parts
        host.agents = [
            FakeAgent("a", 1, 1, "world"),
            FakeAgent("b", 2, 2, "world_nether"),
            FakeAgent("c", 3, 3, "world_the_end"),
        ]

        assert sampler.tick() == 3
        assert buffers.size(Region.PRIMARY) == 1
        assert buffers.size(Region.SECONDARY) == 1
        assert buffers.size(Region.TERTIARY) == 1


class TestSamplerFailures:
    """Tests for per-agent error containment."""

    def test_failing_agent_is_skipped_and_others_sampled(self, parts, caplog):
        host, detector, buffers, sampler = parts
        broken = FakeAgent("broken", 1, 1)
        broken.error = RuntimeError("agent disappeared")
        host.agents = [FakeAgent("a", 1, 1), broken, FakeAgent("b", 2, 2)]

        with caplog.at_level(logging.ERROR, logger="sampler"):
            assert sampler.tick() == 2

        assert "broken" in caplog.text
        assert sorted(detector.known_agents()) == ["a", "b"]
        assert [r.agent for r in buffers.drain()[Region.PRIMARY]] == ["a", "b"]

    def test_agent_whose_name_fails_does_not_abort_tick(self, parts, caplog):
        class GoneAgent(FakeAgent):
            @property
            def name(self):
                raise RuntimeError("player disconnected")

            @name.setter
            def name(self, value):
                pass

        host, detector, buffers, sampler = parts
        host.agents = [FakeAgent("nidia", 10, 20), GoneAgent("gone"), FakeAgent("zed", 1, 2)]

        with caplog.at_level(logging.ERROR, logger="sampler"):
            assert sampler.tick() == 2

        assert "<unknown>" in caplog.text
        assert sorted(detector.known_agents()) == ["nidia", "zed"]
        assert [r.agent for r in buffers.drain()[Region.PRIMARY]] == ["nidia", "zed"]

    def test_out_of_range_coordinate_skips_only_that_agent(self, parts, caplog):
        host, detector, buffers, sampler = parts
        host.agents = [FakeAgent("nidia", 10, 20), FakeAgent("far", 3.0e9, 0)]

        with caplog.at_level(logging.ERROR, logger="sampler"):
            assert sampler.tick() == 1

        assert "far" in caplog.text
        assert sorted(detector.known_agents()) == ["nidia"]
        assert buffers.drain() == {
            Region.PRIMARY: [SampleRecord("nidia", Position(10, 20, Region.PRIMARY))]
        }

    def test_failed_agent_is_sampled_normally_once_it_recovers(self, parts):
        host, _, buffers, sampler = parts
        agent = FakeAgent("flaky", 5, 5)
        agent.error = RuntimeError("mid-read")
        host.agents = [agent]

        assert sampler.tick() == 0
        agent.error = None
        assert sampler.tick() == 1

    def test_no_active_agents_is_a_noop(self, parts):
        host, detector, buffers, sampler = parts
        host.agents = []

        assert sampler.tick() == 0
        assert buffers.is_empty()
        assert len(detector) == 0

import asyncio

import pytest

from distress_monitor.safety.motion import MotionSampler
from distress_monitor.tests.conftest import FakeMotionSource, FakeScheduler, settle


@pytest.mark.asyncio
async def test_enable_subscribes_and_reports_magnitude():
    source = FakeMotionSource()
    sched = FakeScheduler()
    sampler = MotionSampler(source, sched)
    samples = []

    assert await sampler.enable(samples.append) is True
    assert sampler.active is True

    source.emit(3.0, 4.0, 0.0)
    assert len(samples) == 1
    assert samples[0].magnitude == pytest.approx(5.0)
    assert samples[0].timestamp == sched.now()
    assert samples[0].to_dict()["acceleration"] == pytest.approx(5.0)


@pytest.mark.asyncio
async def test_falls_back_to_acceleration_without_gravity_vector():
    source = FakeMotionSource()
    sampler = MotionSampler(source, FakeScheduler())
    samples = []
    await sampler.enable(samples.append)

    source.emit(0.0, 6.0, 8.0, gravity=False)
    assert samples[0].magnitude == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_missing_axes_count_as_zero():
    source = FakeMotionSource()
    sampler = MotionSampler(source, FakeScheduler())
    samples = []
    await sampler.enable(samples.append)

    source.emit(None, 12.0, None)
    assert samples[0].magnitude == pytest.approx(12.0)
    assert samples[0].x == 0.0


@pytest.mark.asyncio
async def test_unsupported_source_is_a_noop():
    source = FakeMotionSource(supported=False)
    sampler = MotionSampler(source, FakeScheduler())

    assert await sampler.enable(lambda s: None) is False
    assert source.listeners == []
    assert sampler.active is False


@pytest.mark.asyncio
async def test_permission_denied_is_remembered():
    source = FakeMotionSource(requires_permission=True, grant=False)
    sampler = MotionSampler(source, FakeScheduler())

    assert await sampler.enable(lambda s: None) is False
    assert await sampler.enable(lambda s: None) is False
    assert source.permission_requests == 1
    assert source.listeners == []


@pytest.mark.asyncio
async def test_permission_granted_once():
    source = FakeMotionSource(requires_permission=True, grant=True)
    sampler = MotionSampler(source, FakeScheduler())

    assert await sampler.enable(lambda s: None) is True
    sampler.disable()
    assert await sampler.enable(lambda s: None) is True
    assert source.permission_requests == 1


@pytest.mark.asyncio
async def test_disable_is_idempotent():
    source = FakeMotionSource()
    sampler = MotionSampler(source, FakeScheduler())
    await sampler.enable(lambda s: None)

    sampler.disable()
    sampler.disable()
    assert source.listeners == []
    assert sampler.active is False


@pytest.mark.asyncio
async def test_disable_while_permission_pending_stays_disabled():
    gate = asyncio.Event()
    source = FakeMotionSource(requires_permission=True, grant=True, permission_gate=gate)
    sampler = MotionSampler(source, FakeScheduler())

    task = asyncio.ensure_future(sampler.enable(lambda s: None))
    await settle()
    sampler.disable()
    gate.set()

    assert await task is False
    assert source.listeners == []


@pytest.mark.asyncio
async def test_enable_while_permission_pending_shares_one_request():
    gate = asyncio.Event()
    source = FakeMotionSource(requires_permission=True, grant=True, permission_gate=gate)
    sampler = MotionSampler(source, FakeScheduler())

    first = asyncio.ensure_future(sampler.enable(lambda s: None))
    await settle()
    sampler.disable()
    second = asyncio.ensure_future(sampler.enable(lambda s: None))
    await settle()
    gate.set()

    assert await first is True
    assert await second is True
    assert source.permission_requests == 1
    assert len(source.listeners) == 1

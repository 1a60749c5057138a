"""Host-only checks of DeviceResources construction rollback and release.

pyopencl is swapped for a small in-process double so these run without an
OpenCL platform.
"""

from types import SimpleNamespace

import pytest

from clsgemm import device
from clsgemm.device import DeviceResources
from clsgemm.errors import AcceleratorError, ConfigurationError
from clsgemm.geometry import LaunchGeometry


class FakeCLError(Exception):
    code = -5


class FakeBuffer:
    def __init__(self, ctx, flags, size, fail_release=False):
        self.size = size
        self.released = False
        self.fail_release = fail_release

    def release(self):
        self.released = True
        if self.fail_release:
            raise FakeCLError("CL_OUT_OF_RESOURCES")


def _fake_cl(buffers, fail_on_buffer=None, fail_release_on=None):
    def make_buffer(ctx, flags, size):
        if fail_on_buffer is not None and len(buffers) == fail_on_buffer:
            raise FakeCLError("CL_MEM_OBJECT_ALLOCATION_FAILURE")
        buf = FakeBuffer(ctx, flags, size, fail_release=len(buffers) == fail_release_on)
        buffers.append(buf)
        return buf

    return SimpleNamespace(
        Error=FakeCLError,
        Context=lambda devices: SimpleNamespace(devices=devices),
        CommandQueue=lambda ctx, dev, properties=0: SimpleNamespace(properties=properties),
        command_queue_properties=SimpleNamespace(PROFILING_ENABLE=2),
        Kernel=lambda program, name: SimpleNamespace(name=name),
        mem_flags=SimpleNamespace(READ_WRITE=1),
        Buffer=make_buffer,
    )


@pytest.fixture
def fake_platform(monkeypatch):
    buffers = []

    def install(**kwargs):
        monkeypatch.setattr(device, "cl", _fake_cl(buffers, **kwargs))
        return buffers

    monkeypatch.setattr(
        device,
        "select_device",
        lambda device_type: (SimpleNamespace(name="Fake Platform"), SimpleNamespace(name="Fake Device")),
    )
    monkeypatch.setattr(device, "build_program", lambda ctx, dev, source, options, origin: SimpleNamespace())
    return install


@pytest.fixture
def released_instances(monkeypatch):
    seen = []
    original = DeviceResources.release

    def recording_release(self):
        seen.append(self)
        original(self)

    monkeypatch.setattr(DeviceResources, "release", recording_release)
    return seen


def _dims(geometry):
    return geometry.plan(70, 70, 70)


def _assert_fully_released(res):
    assert res.released
    for name in ("context", "queue", "program", "kernel", "a_buf", "b_buf", "c_buf"):
        assert getattr(res, name) is None, name
    assert res.a_staging is None and res.c_staging is None


def test_contract_failure_releases_partial_resources(fake_platform, released_instances, monkeypatch):
    fake_platform()

    def reject(kernel, dev, geometry, kernel_name):
        raise ConfigurationError("work-group of 256 items exceeds the device limit")

    monkeypatch.setattr(device, "check_launch_contract", reject)
    g = LaunchGeometry()
    with pytest.raises(ConfigurationError, match="exceeds the device limit"):
        DeviceResources(_dims(g), g, validate_contract=True)
    assert len(released_instances) == 1
    _assert_fully_released(released_instances[0])


def test_buffer_allocation_failure_releases_earlier_buffers(fake_platform, released_instances):
    buffers = fake_platform(fail_on_buffer=2)
    g = LaunchGeometry()
    with pytest.raises(AcceleratorError) as info:
        DeviceResources(_dims(g), g, validate_contract=False)
    assert info.value.kind == "accelerator"
    assert len(buffers) == 2
    assert all(b.released for b in buffers)
    _assert_fully_released(released_instances[0])


def test_release_clears_every_handle_when_a_buffer_release_fails(fake_platform):
    buffers = fake_platform(fail_release_on=0)
    g = LaunchGeometry()
    res = DeviceResources(_dims(g), g, validate_contract=False)
    assert len(buffers) == 3
    with pytest.raises(AcceleratorError):
        res.release()
    assert all(b.released for b in buffers)
    _assert_fully_released(res)
    # a second release is a no-op
    res.release()


def test_successful_construction_sizes_buffers_to_padded_dims(fake_platform):
    buffers = fake_platform()
    g = LaunchGeometry()
    with DeviceResources(_dims(g), g, validate_contract=False) as res:
        assert res.device.name == "Fake Device"
        assert [b.size for b in buffers] == [128 * 128 * 4] * 3
        assert res.a_staging.shape == (128, 128)
    _assert_fully_released(res)

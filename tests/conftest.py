import numpy as np
import pytest

from clsgemm.engine import SgemmEngine
from clsgemm.geometry import LaunchGeometry


class FakeResources:
    """In-process stand-in for DeviceResources.

    Device buffers are flat NumPy arrays pre-filled with NaN so any byte the
    engine forgets to upload shows up in the result. ``launch`` checks the
    work decomposition and then evaluates the kernel contract in NumPy.
    """

    def __init__(self, dims, geometry, **_options):
        self.dims = dims
        self.geometry = geometry
        m, n, k = dims.m_padded, dims.n_padded, dims.k_padded
        self.a_buf = np.full(m * k, np.nan, dtype=np.float32)
        self.b_buf = np.full(k * n, np.nan, dtype=np.float32)
        self.c_buf = np.full(m * n, np.nan, dtype=np.float32)
        self.a_staging = np.zeros((m, k), dtype=np.float32)
        self.b_staging = np.zeros((k, n), dtype=np.float32)
        self.c_staging = np.zeros((m, n), dtype=np.float32)
        self.released = False
        self.uploads = []
        self.downloads = []
        self.launches = []

    def upload(self, buf, host):
        assert host.dtype == np.float32 and host.flags.c_contiguous
        assert host.size == buf.size, "transfer must cover the whole padded buffer"
        self.uploads.append(host)
        buf[:] = host.reshape(-1)

    def download(self, host, buf):
        assert host.size == buf.size, "transfer must cover the whole padded buffer"
        self.downloads.append(host)
        host.reshape(-1)[:] = buf

    def launch(self, args, global_size, local_size):
        a, b, c, m, n, k = args
        assert all(isinstance(v, np.int32) for v in (m, n, k))
        m, n, k = int(m), int(n), int(k)
        vec = self.geometry.vector_width
        tile = self.geometry.tile_width
        assert tuple(global_size) == (m, n // vec)
        assert tuple(local_size) == (tile, tile // vec)
        assert m % tile == 0 and n % tile == 0 and k % tile == 0
        c[:] = (a.reshape(m, k) @ b.reshape(k, n)).reshape(-1)
        self.launches.append((global_size, local_size, (m, n, k)))
        return 0.25

    def release(self):
        self.released = True


@pytest.fixture
def fake_resources_cls():
    return FakeResources


@pytest.fixture
def make_engine():
    def _make(M, N, K, tile_width=64, vector_width=16):
        geometry = LaunchGeometry(tile_width, vector_width)
        resources = FakeResources(geometry.plan(M, N, K), geometry)
        return SgemmEngine(M, N, K, geometry=geometry, resources=resources)

    return _make


@pytest.fixture
def fake_engine_factory():
    def _factory(M, N, K, geometry=None, **_options):
        geometry = geometry or LaunchGeometry()
        return SgemmEngine(M, N, K, geometry=geometry, resources=FakeResources(geometry.plan(M, N, K), geometry))

    return _factory

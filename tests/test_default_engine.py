import numpy as np
import pytest

import clsgemm.engine as engine_mod
from clsgemm.errors import EngineStateError


@pytest.fixture(autouse=True)
def _fake_device(monkeypatch, fake_resources_cls):
    monkeypatch.setattr(engine_mod, "DeviceResources", fake_resources_cls)
    monkeypatch.setattr(engine_mod, "_DEFAULT_ENGINE", None)


def test_multiply_before_initialize_raises():
    with pytest.raises(EngineStateError):
        engine_mod.multiply(np.ones((4, 4), np.float32), np.ones((4, 4), np.float32))


def test_initialize_multiply_finalize():
    M, N, K = 5, 6, 7
    engine_mod.initialize(M, N, K)
    A = np.random.default_rng(0).random((M, K), dtype=np.float32)
    B = np.random.default_rng(1).random((K, N), dtype=np.float32)
    C = np.zeros((M, N), dtype=np.float32)
    engine_mod.multiply(A, B, C, M, N, K)
    assert np.allclose(C, A @ B, atol=1e-5)
    engine_mod.finalize()
    assert engine_mod.default_engine().finalized
    with pytest.raises(EngineStateError):
        engine_mod.multiply(A, B, C, M, N, K)


def test_double_initialize_rejected():
    engine_mod.initialize(8, 8, 8)
    with pytest.raises(EngineStateError):
        engine_mod.initialize(8, 8, 8)
    engine_mod.finalize()
    # a finalized default engine can be replaced
    engine_mod.initialize(16, 16, 16)
    engine_mod.finalize()


def test_finalize_without_initialize_is_noop():
    engine_mod.finalize()

import pytest

from clsgemm.errors import ConfigurationError
from clsgemm.geometry import LaunchGeometry


def test_default_decomposition():
    g = LaunchGeometry()
    assert (g.tile_width, g.vector_width) == (64, 16)
    assert g.local_size == (64, 4)
    assert g.work_group_items == 256
    dims = g.plan(128, 256, 64)
    assert g.global_size(dims) == (128, 16)


def test_plan_pads_every_dimension():
    dims = LaunchGeometry().plan(65, 70, 33)
    assert (dims.m_padded, dims.n_padded, dims.k_padded) == (128, 128, 64)
    assert dims.a_needs_padding and dims.b_needs_padding and dims.c_needs_padding


def test_plan_aligned_dims_need_no_padding():
    dims = LaunchGeometry().plan(64, 64, 64)
    assert dims.padded == (64, 64, 64)
    assert not (dims.a_needs_padding or dims.b_needs_padding or dims.c_needs_padding)


def test_partial_padding_flags():
    # only K is unaligned: C is untouched but A and B need staging
    dims = LaunchGeometry().plan(64, 128, 10)
    assert dims.a_needs_padding and dims.b_needs_padding
    assert not dims.c_needs_padding


def test_vector_width_must_divide_tile_width():
    with pytest.raises(ConfigurationError):
        LaunchGeometry(tile_width=64, vector_width=24)


@pytest.mark.parametrize("tile,vec", [(0, 1), (16, 0), (-8, 4)])
def test_non_positive_geometry_rejected(tile, vec):
    with pytest.raises(ConfigurationError):
        LaunchGeometry(tile, vec)


def test_non_positive_dims_rejected():
    with pytest.raises(ConfigurationError):
        LaunchGeometry().plan(0, 4, 4)


def test_from_config_reads_environment(monkeypatch):
    monkeypatch.setenv("CLSGEMM_TILE_WIDTH", "32")
    monkeypatch.setenv("CLSGEMM_VECTOR_WIDTH", "8")
    g = LaunchGeometry.from_config()
    assert (g.tile_width, g.vector_width) == (32, 8)
    assert LaunchGeometry.from_config(tile_width=16, vector_width=4).local_size == (16, 4)


def test_build_options_carry_geometry():
    assert LaunchGeometry(32, 4).build_options() == "-D TILE_WIDTH=32 -D VECTOR_WIDTH=4"


@pytest.mark.parametrize("tile,vec", [(0, 4), (16, 0)])
def test_from_config_rejects_explicit_zero(tile, vec):
    with pytest.raises(ConfigurationError):
        LaunchGeometry.from_config(tile_width=tile, vector_width=vec)


def test_from_config_rejects_unparseable_env(monkeypatch):
    monkeypatch.setenv("CLSGEMM_TILE_WIDTH", "wide")
    with pytest.raises(ConfigurationError):
        LaunchGeometry.from_config()


def test_from_config_reads_env(monkeypatch):
    monkeypatch.setenv("CLSGEMM_TILE_WIDTH", "32")
    monkeypatch.setenv("CLSGEMM_VECTOR_WIDTH", "8")
    g = LaunchGeometry.from_config()
    assert (g.tile_width, g.vector_width) == (32, 8)

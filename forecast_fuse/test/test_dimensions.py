import numpy as np
import pytest

import forecast_fuse as ff
from forecast_fuse import units
from forecast_fuse.dimensions import Dimension, DimensionCatalog, ObsFlag, index_of
from forecast_fuse.schema_ctx import ContextCfg, MalformedUnitError, SchemaCtx


def test_daily_catalog():
    dims = DimensionCatalog.daily("2001-03-04", 30, [1, 3, 5], 10)
    assert dims.shape == (30, 3, 10, 2, 2)
    assert dims.sizes == dict(time=30, depth=3, ensemble=10, obs_flag=2, species=2)
    assert dims.time.values[0] == np.datetime64("2001-03-04")
    assert dims.time.values[-1] == np.datetime64("2001-04-02")
    assert dims.time.unit_text == "days since 2001-03-04"
    assert isinstance(dims.time.unit, units.ReferenceTimeUnit)
    assert dims.depth.unit_text == str(units.parse_unit("meters"))
    assert dims.ensemble.values.tolist() == list(range(1, 11))
    assert dims.obs_flag.values.tolist() == [ObsFlag.LATENT, ObsFlag.OBS_ERROR]
    assert dims.species_names == ["species_1", "species_2"]
    assert [d.name for d in dims.array_dims] == ["time", "depth", "ensemble", "obs_flag"]


def test_malformed_unit_at_definition():
    with pytest.raises(MalformedUnitError) as ei:
        Dimension("depth", "not_a_unit_xyz", [1, 3, 5])
    assert ei.value.path == "dimensions/depth/unit"

    with pytest.raises(MalformedUnitError) as ei:
        DimensionCatalog.daily("2001-03-04", 3, [1], 2, depth_unit="meters per bogus")
    assert ei.value.path == "dimensions/depth/unit"


def test_time_requires_reference_unit():
    good = DimensionCatalog.daily("2001-03-04", 3, [1], 2)
    bad_time = Dimension("time", "days", good.time.values)
    with pytest.raises(MalformedUnitError):
        DimensionCatalog(bad_time, good.depth, good.ensemble, good.obs_flag, good.species)


def test_invalid_dimension_values():
    with pytest.raises(ValueError):
        Dimension("depth", "meters", [1, 1, 3])
    with pytest.raises(ValueError):
        DimensionCatalog.daily("2001-03-04", 3, [1], 2, obs_flag=[1, 3])


def test_index_of():
    axis = np.array([5.0, 1.0, 3.0])
    assert index_of(axis, [1.0, 5.0, 4.0]).tolist() == [1, 0, -1]
    assert index_of(np.array([]), [1.0]).tolist() == [-1]


def test_from_cfg():
    cfg = ContextCfg(dict(time=dict(start="2001-03-04", n_days=5),
                          depth=dict(values=[1, 3, 5]),
                          ensemble=dict(size=4)), SchemaCtx(["dimensions"]))
    dims = DimensionCatalog.from_cfg(cfg)
    assert dims.shape == (5, 3, 4, 2, 2)

    with pytest.raises(ff.SchemaValidationError) as ei:
        DimensionCatalog.from_cfg(ContextCfg(dict(time=dict(start="2001-03-04")), SchemaCtx(["dimensions"])))
    assert ei.value.path == "dimensions/time/n_days"


def test_forecast_tensor_shape(forecast):
    tensor, flags = forecast
    dims = tensor.dims
    assert tensor.values.shape == (30, 3, 10, 2, 2)
    assert tensor.species("species_2").shape == (30, 3, 10, 2)
    with pytest.raises(ValueError):
        ff.ForecastTensor(dims, np.zeros((30, 3, 9, 2, 2)))
    empty = ff.ForecastTensor.empty(dims)
    assert empty.absent_mask.all()


def test_flag_sequences(forecast):
    tensor, flags = forecast
    assert len(flags) == 30
    assert flags.forecast[:15].tolist() == [0] * 15
    with pytest.raises(ValueError):
        ff.FlagSequences.for_dims(tensor.dims, [0] * 29, [0] * 30)
    with pytest.raises(ValueError):
        ff.FlagSequences.for_dims(tensor.dims, [-1] + [0] * 29, [0] * 30)
    with pytest.raises(ValueError):
        ff.FlagSequences.for_dims(tensor.dims, [0.5] + [0] * 29, [0] * 30)

"""
Array container of the raw forecast ensemble.

The container is a zarr v3 hierarchy packed into a single zip file:
- one variable per species with dims (time, depth, ensemble, obs_flag)
- 'forecast' and 'data_assimilation' flag variables with dim (time)
- float32 values, _FillValue = 1e32 for every cell not written (NaN in the tensor)
- global attributes forecast_project_id, forecast_model_id, forecast_iteration_id

The hierarchy is first built in memory and then dumped into the zip file at once,
so a failure never leaves a truncated container behind.
"""
import logging
import zipfile
from pathlib import Path
from typing import *

import numpy as np
import xarray as xr
import zarr

from . import units
from .dimensions import Dimension, DimensionCatalog, index_of
from .forecast_data import ForecastTensor, FlagSequences, ForecastIdentifiers
from .schema_ctx import SchemaCtx, UnmatchedTimeError

log = logging.getLogger(__name__)

FLAG_VARS = ['forecast', 'data_assimilation']


def container_path(url: str | Path, workdir: str | Path = ".") -> Path:
    """
    Resolve container URL: 'zip://<path>', 'file://<path>' or a plain path.
    Relative paths are resolved against `workdir`.
    """
    url = str(url)
    if url.startswith('zip://'):
        url = url[len('zip://'):]
    elif url.startswith('file://'):
        url = url[len('file://'):]
    elif '://' in url:
        raise ValueError(f"Unsupported container URL scheme: {url}")
    path = Path(url)
    if not path.is_absolute():
        path = Path(workdir) / path
    return path


def check_units(dims: DimensionCatalog):
    """
    Re-parse units of all container dimensions, MalformedUnitError
    is raised before anything is written.
    """
    for dim in dims.array_dims:
        units.parse_unit(dim.unit_text, SchemaCtx(['dimensions', dim.name, 'unit']))


def _coord_variable(dim: Dimension) -> xr.Variable:
    attrs = {'units': dim.unit_text, 'long_name': dim.description or dim.name}
    if isinstance(dim.unit, units.ReferenceTimeUnit):
        # CF time: numeric offsets from the reference date.
        data = dim.unit.encode(dim.values)
        attrs['calendar'] = 'standard'
    else:
        data = dim.values
    return xr.Variable(dims=(dim.name,), data=data, attrs=attrs)


def _flag_positions(dims: DimensionCatalog, flags: FlagSequences) -> np.ndarray:
    """Position of every container time in the flag sequences."""
    idx = index_of(flags.time.astype(dims.time.values.dtype), dims.time.values)
    missing = dims.time.values[idx < 0]
    if len(missing):
        raise UnmatchedTimeError(
            f"No flag entry for times: {np.datetime_as_string(missing, unit='D').tolist()}",
            SchemaCtx(['flags', 'time']))
    return idx


def forecast_dataset(tensor: ForecastTensor, flags: FlagSequences,
                     identifiers: ForecastIdentifiers, history: str = None) -> xr.Dataset:
    """
    Create the container dataset. NaN cells of the tensor become fill values when written.
    """
    dims = tensor.dims
    check_units(dims)
    dim_names = [d.name for d in dims.array_dims]
    coords = xr.Coordinates({d.name: _coord_variable(d) for d in dims.array_dims})

    data_vars = {}
    for name in dims.species_names:
        data_vars[name] = xr.Variable(
            dims=dim_names,
            data=tensor.species(name),
            attrs={'units': dims.species.unit_text, 'long_name': f"population density of {name}"})

    idx = _flag_positions(dims, flags)
    flag_descriptions = {
        'forecast': "forecast horizon in steps, 0 = hindcast",
        'data_assimilation': "number of assimilated observations, 0 = free run",
    }
    for name in FLAG_VARS:
        values = getattr(flags, name)[idx].astype(np.float64)
        data_vars[name] = xr.Variable(
            dims=('time',), data=values,
            attrs={'units': 'dimensionless', 'long_name': flag_descriptions[name]})

    attrs = identifiers.global_attrs()
    if history:
        attrs['history'] = history
    return xr.Dataset(data_vars=data_vars, coords=coords, attrs=attrs)


def _encoding(ds: xr.Dataset, fill_value: float) -> Dict[str, Dict[str, Any]]:
    return {name: {'dtype': 'float32', '_FillValue': fill_value} for name in ds.data_vars}


def write_forecast_container(url: str | Path, tensor: ForecastTensor, flags: FlagSequences,
                             identifiers: ForecastIdentifiers, history: str = None,
                             workdir: str | Path = ".") -> Path:
    """
    Write the forecast ensemble into a single-file container, overwriting an existing one.
    Return the container path.
    """
    path = container_path(url, workdir)
    ds = forecast_dataset(tensor, flags, identifiers, history)
    encoding = _encoding(ds, tensor.fill_value)

    store_dict = {}
    memory_store = zarr.storage.MemoryStore(store_dict)
    ds.to_zarr(memory_store, mode='w', consolidated=False, encoding=encoding)

    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(path, mode='w') as zip_file:
            for key in sorted(store_dict):
                zip_file.writestr(key, store_dict[key].as_numpy_array().tobytes())
    except BaseException:
        path.unlink(missing_ok=True)
        raise
    log.info(f"Forecast container written: {path} ({len(store_dict)} keys)")
    return path


def read_forecast_container(url: str | Path, mask: bool = True, workdir: str | Path = ".") -> xr.Dataset:
    """
    Read the container into memory.
    mask=False keeps fill values (1e32) instead of NaN and time offsets instead of dates.
    """
    path = container_path(url, workdir)
    store = zarr.storage.ZipStore(path, mode='r')
    try:
        ds = xr.open_zarr(store, consolidated=False, mask_and_scale=mask, decode_times=mask)
        ds = ds.load()
    finally:
        store.close()
    return ds

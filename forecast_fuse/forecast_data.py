from typing import *

import attrs
import numpy as np

from .dimensions import DimensionCatalog

FILL_VALUE = 1e32


def _float_array(values) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


@attrs.define(eq=False)
class ForecastTensor:
    """
    Population densities indexed by (time, depth, ensemble, obs_flag, species).
    NaN cells are structurally absent and are written as `fill_value`.
    """
    dims: DimensionCatalog
    values: np.ndarray = attrs.field(converter=_float_array)
    fill_value: float = FILL_VALUE

    @values.validator
    def _check_shape(self, attribute, values):
        expected = self.dims.shape
        if values.shape != expected:
            raise ValueError(
                f"Forecast tensor shape {values.shape} does not match dimensions "
                f"{list(self.dims.sizes.items())} -> {expected}.")

    @classmethod
    def empty(cls, dims: DimensionCatalog) -> 'ForecastTensor':
        return cls(dims, np.full(dims.shape, np.nan))

    def species(self, name: str) -> np.ndarray:
        """4D array (time, depth, ensemble, obs_flag) of a single species."""
        i_species = self.dims.species_names.index(name)
        return self.values[..., i_species]

    @property
    def absent_mask(self) -> np.ndarray:
        return np.isnan(self.values)


def _int_array(values) -> np.ndarray:
    arr = np.asarray(values)
    if arr.size and not np.all(np.equal(np.mod(arr, 1), 0)):
        raise ValueError(f"Flag values must be integers, got: {arr}")
    return arr.astype(np.int64)


@attrs.define(eq=False)
class FlagSequences:
    """
    Per time step flags:
    forecast:          0 = hindcast, >0 = forecast horizon in steps
    data_assimilation: 0 = free run, >0 = number of assimilated observations
    """
    time: np.ndarray = attrs.field(converter=lambda t: np.asarray(t, dtype='datetime64[D]'))
    forecast: np.ndarray = attrs.field(converter=_int_array)
    data_assimilation: np.ndarray = attrs.field(converter=_int_array)

    def __attrs_post_init__(self):
        for name in ('forecast', 'data_assimilation'):
            seq = getattr(self, name)
            if seq.shape != self.time.shape:
                raise ValueError(f"Flag '{name}' has length {len(seq)}, time has length {len(self.time)}.")
            if np.any(seq < 0):
                raise ValueError(f"Flag '{name}' has negative values.")

    @classmethod
    def for_dims(cls, dims: DimensionCatalog, forecast, data_assimilation) -> 'FlagSequences':
        return cls(dims.time.values, forecast, data_assimilation)

    def __len__(self):
        return len(self.time)


def _opt_str(value) -> Optional[str]:
    # YAML reads time stamp like ids as numbers
    return None if value is None else str(value)


@attrs.define(frozen=True)
class ForecastIdentifiers:
    """
    project_id:   groups all runs of one forecasting system
    model_id:     changes whenever the model or workflow changes
    iteration_id: unique per run, e.g. the issue time stamp
    """
    project_id: Optional[str] = attrs.field(converter=_opt_str)
    model_id: Optional[str] = attrs.field(converter=_opt_str)
    iteration_id: Optional[str] = attrs.field(converter=_opt_str)

    def global_attrs(self) -> Dict[str, str]:
        return dict(
            forecast_project_id=self.project_id,
            forecast_model_id=self.model_id,
            forecast_iteration_id=self.iteration_id,
        )

"""
Dimension catalog: the named axes over which forecast values are indexed.

    time      daily timestamps, unit 'days since <first day>'
    depth     meters
    ensemble  integer member id
    obs_flag  1 = latent state, 2 = latent state + observation error
    species   categorical, folded into one variable/column per species
"""
import enum
import logging
from typing import *

import attrs
import numpy as np

from . import units
from .schema_ctx import ContextCfg, SchemaCtx

log = logging.getLogger(__name__)


class ObsFlag(enum.IntEnum):
    LATENT = 1
    OBS_ERROR = 2


def index_of(axis: np.ndarray, values) -> np.ndarray:
    """Position of given values on the `axis`, -1 for values not on the axis."""
    values = np.asarray(values)
    if len(axis) == 0:
        return np.full(values.shape, -1)
    order = np.argsort(axis)
    sorted_vals = axis[order]
    pos = np.searchsorted(sorted_vals, values)
    pos = np.clip(pos, 0, len(sorted_vals) - 1)
    found = sorted_vals[pos] == values
    return np.where(found, order[pos], -1)


def _as_1d(values) -> np.ndarray:
    values = np.atleast_1d(np.asarray(values))
    if values.ndim != 1:
        raise ValueError(f"Dimension values must be 1D, got shape {values.shape}.")
    return values


@attrs.define(eq=False)
class Dimension:
    name: str
    unit: units.UnitType
    values: np.ndarray = attrs.field(converter=_as_1d)
    description: Optional[str] = None

    def __attrs_post_init__(self):
        # Parsed at definition time, MalformedUnitError propagates.
        self.unit = units.parse_unit(self.unit, SchemaCtx(["dimensions", self.name, "unit"]))
        unique = np.unique(self.values)
        if len(unique) != len(self.values):
            raise ValueError(f"Dimension {self.name}: coordinate values are not unique.")

    def __len__(self):
        return len(self.values)

    @property
    def unit_text(self) -> str:
        return str(self.unit)

    def asdict(self, value_serializer, filter):
        vals = self.values
        if np.issubdtype(vals.dtype, np.datetime64):
            vals = np.datetime_as_string(vals, unit='D')
        return dict(name=self.name, unit=self.unit_text,
                    values=vals.tolist(), description=self.description)


@attrs.define(eq=False)
class DimensionCatalog:
    time: Dimension
    depth: Dimension
    ensemble: Dimension
    obs_flag: Dimension
    species: Dimension

    def __attrs_post_init__(self):
        if not np.issubdtype(self.time.values.dtype, np.datetime64):
            raise TypeError(f"Time dimension requires datetime64 values, got {self.time.values.dtype}.")
        if not isinstance(self.time.unit, units.ReferenceTimeUnit):
            raise units.MalformedUnitError(
                f"Time unit '{self.time.unit_text}' is not a '<unit> since <date>' expression.",
                SchemaCtx(['dimensions', 'time', 'unit']))
        invalid = set(self.obs_flag.values.tolist()) - {f.value for f in ObsFlag}
        if invalid:
            raise ValueError(f"Invalid obs_flag values: {sorted(invalid)}")

    @classmethod
    def daily(cls, start: str, n_days: int, depth: Sequence[float],
              n_ensemble: int, species: Sequence[str] = ('species_1', 'species_2'),
              obs_flag: Sequence[int] = (ObsFlag.LATENT, ObsFlag.OBS_ERROR),
              depth_unit: str = 'meters') -> 'DimensionCatalog':
        """
        Daily time axis starting at `start`, ensemble members numbered from 1.
        """
        first = np.datetime64(start, 'D')
        times = first + np.arange(n_days).astype('timedelta64[D]')
        return cls(
            time=Dimension('time', f"days since {start}", times, "time"),
            depth=Dimension('depth', depth_unit, np.asarray(depth, dtype=np.float64), "depth in reservoir"),
            ensemble=Dimension('ensemble', 'dimensionless', np.arange(1, n_ensemble + 1), "index of ensemble member"),
            obs_flag=Dimension('obs_flag', 'dimensionless', np.asarray([int(f) for f in obs_flag]),
                               "observation error"),
            species=Dimension('species', 'dimensionless', np.asarray(species), "species name"),
        )

    @classmethod
    def from_cfg(cls, cfg: ContextCfg) -> 'DimensionCatalog':
        """
        Build from a 'dimensions' mapping:
            time: {start: 2001-03-04, n_days: 30}
            depth: {values: [1, 3, 5], unit: meters}
            ensemble: {size: 10}
            species: [species_1, species_2]
        """
        time = cfg.get('time', {})
        depth = cfg.get('depth', {})
        ensemble = cfg.get('ensemble', {})
        species = cfg.get('species', ['species_1', 'species_2']).value()
        return cls.daily(
            start=str(time.required('start')),
            n_days=int(time.required('n_days')),
            depth=depth.required('values'),
            depth_unit=depth.get('unit', 'meters').value(),
            n_ensemble=int(ensemble.required('size')),
            species=species,
        )

    def items(self) -> List[Dimension]:
        return [self.time, self.depth, self.ensemble, self.obs_flag, self.species]

    @property
    def sizes(self) -> Dict[str, int]:
        return {d.name: len(d) for d in self.items()}

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(len(d) for d in self.items())

    @property
    def array_dims(self) -> List[Dimension]:
        """Axes of a single species variable in the array container."""
        return [self.time, self.depth, self.ensemble, self.obs_flag]

    @property
    def species_names(self) -> List[str]:
        return [str(s) for s in self.species.values]

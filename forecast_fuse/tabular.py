"""
Long format tables derived from the forecast tensor.

ensemble table:
    time, depth, ensemble, obs_flag, <species...>, forecast, data_assimilation
    one row per (time, depth, ensemble, obs_flag)

summary table:
    time, depth, statistic, obs_flag, <species...>, forecast, data_assimilation
    one row per (time, depth, obs_flag, statistic)

Statistic labels depend on obs_flag:
    obs_flag = 1 (latent state):  mean, se, Conf_interv_02.5, Conf_interv_97.5
    obs_flag = 2 (+ obs. error):  mean, sd, Pred_interv_02.5, Pred_interv_97.5
Quantiles use linear interpolation between order statistics.
The spread of a single member group is missing (NA in the CSV).
"""
import logging
from pathlib import Path
from typing import *

import numpy as np
import polars as pl

from .dimensions import ObsFlag
from .forecast_data import ForecastTensor, FlagSequences
from .schema_ctx import SchemaCtx, UnmatchedTimeError

log = logging.getLogger(__name__)

NA_CODE = 'NA'
DATE_FORMAT = '%Y-%m-%d'
INDEX_COLS = ['time', 'depth', 'ensemble', 'obs_flag']
FLAG_COLS = ['forecast', 'data_assimilation']
GROUP_COLS = ['time', 'depth', 'obs_flag', 'species'] + FLAG_COLS

STATISTICS = {
    # raw name: (rank, latent label, observed label)
    'mean': (0, 'mean', 'mean'),
    'spread': (1, 'se', 'sd'),
    'lower': (2, 'Conf_interv_02.5', 'Pred_interv_02.5'),
    'upper': (3, 'Conf_interv_97.5', 'Pred_interv_97.5'),
}
QUANTILES = {'lower': 0.025, 'upper': 0.975}


def _date_series(name: str, values: np.ndarray) -> pl.Series:
    return pl.Series(name, values.astype('datetime64[ms]')).cast(pl.Date)


def _flags_frame(flags: FlagSequences) -> pl.DataFrame:
    if len(np.unique(flags.time)) != len(flags.time):
        raise ValueError("Flag sequences contain duplicate times.")
    return pl.DataFrame([
        _date_series('time', flags.time),
        pl.Series('forecast', flags.forecast, dtype=pl.Int64),
        pl.Series('data_assimilation', flags.data_assimilation, dtype=pl.Int64),
    ])


def ensemble_table(tensor: ForecastTensor, flags: FlagSequences) -> pl.DataFrame:
    """
    Flatten the tensor to one row per (time, depth, ensemble, obs_flag) and
    broadcast the per time flags on every row of that time.
    """
    dims = tensor.dims
    grids = np.meshgrid(*[d.values for d in dims.array_dims], indexing='ij')
    columns = [
        _date_series('time', grids[0].ravel()),
        pl.Series('depth', grids[1].ravel(), dtype=pl.Float64),
        pl.Series('ensemble', grids[2].ravel(), dtype=pl.Int64),
        pl.Series('obs_flag', grids[3].ravel(), dtype=pl.Int64),
    ]
    for name in dims.species_names:
        columns.append(pl.Series(name, tensor.species(name).ravel(), dtype=pl.Float64))
    df = pl.DataFrame(columns)
    # Structurally absent cells are written as the NA code.
    df = df.with_columns([pl.col(name).fill_nan(None) for name in dims.species_names])

    df = df.join(_flags_frame(flags), on='time', how='left', maintain_order='left')
    unmatched = df.filter(pl.col('forecast').is_null())['time'].unique().sort()
    if len(unmatched):
        raise UnmatchedTimeError(
            f"No flag entry for times: {[str(t) for t in unmatched.to_list()]}",
            SchemaCtx(['flags', 'time']))

    expected_rows = int(np.prod([len(d) for d in dims.array_dims]))
    assert df.height == expected_rows, f"{df.height} rows != {expected_rows}"
    log.debug(f"Ensemble table: {df.height} rows")
    return df


def species_columns(table: pl.DataFrame) -> List[str]:
    return [c for c in table.columns if c not in INDEX_COLS + FLAG_COLS + ['statistic']]


def _statistic_label() -> pl.Expr:
    latent = {raw: labels[1] for raw, labels in STATISTICS.items()}
    observed = {raw: labels[2] for raw, labels in STATISTICS.items()}
    stat = pl.col('statistic')
    return (pl.when(pl.col('obs_flag') == int(ObsFlag.LATENT))
            .then(stat.replace_strict(latent))
            .otherwise(stat.replace_strict(observed)))


def summary_long(table: pl.DataFrame) -> pl.DataFrame:
    """
    Statistics over ensemble members, one row per
    (time, depth, obs_flag, species, forecast, data_assimilation, statistic).
    """
    species = species_columns(table)
    long = table.unpivot(index=INDEX_COLS + FLAG_COLS, on=species,
                         variable_name='species', value_name='value')
    value = pl.col('value')
    grouped = long.group_by(GROUP_COLS, maintain_order=True).agg(
        mean=value.mean(),
        # ddof=1 spread is null for a single member
        spread=value.std(ddof=1),
        lower=value.quantile(QUANTILES['lower'], interpolation='linear'),
        upper=value.quantile(QUANTILES['upper'], interpolation='linear'),
    )
    stats = grouped.unpivot(index=GROUP_COLS, on=list(STATISTICS.keys()),
                            variable_name='statistic', value_name='value')
    rank = {raw: labels[0] for raw, labels in STATISTICS.items()}
    stats = (stats
             .with_columns(_rank=pl.col('statistic').replace_strict(rank, return_dtype=pl.Int64))
             .with_columns(statistic=_statistic_label())
             .sort(['time', 'depth', 'obs_flag', 'species', '_rank'])
             .drop('_rank'))
    return stats.select(['time', 'depth', 'statistic', 'obs_flag', 'species', 'value'] + FLAG_COLS)


def summary_table(table: pl.DataFrame) -> pl.DataFrame:
    """
    Summary statistics with species as columns, 'ensemble' replaced by 'statistic'.
    """
    species = species_columns(table)
    long = summary_long(table)
    wide = long.pivot(on='species', index=['time', 'depth', 'statistic', 'obs_flag'] + FLAG_COLS,
                      values='value', maintain_order=True)
    return wide.select(['time', 'depth', 'statistic', 'obs_flag'] + species + FLAG_COLS)


def csv_text(df: pl.DataFrame) -> str:
    # NaN and null are both written as the missing value code
    df = df.with_columns([pl.col(name).fill_nan(None)
                          for name, dtype in df.schema.items() if dtype.is_float()])
    return df.write_csv(None, null_value=NA_CODE, date_format=DATE_FORMAT)


def write_table(df: pl.DataFrame, path: str | Path) -> Path:
    """Write CSV with ISO dates and the NA code for missing values."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with path.open('w', encoding='utf-8', newline='') as f:
            f.write(csv_text(df))
    except BaseException:
        path.unlink(missing_ok=True)
        raise
    log.info(f"Table written: {path} ({df.height} rows)")
    return path


def read_table(path: str | Path) -> pl.DataFrame:
    df = pl.read_csv(path, null_values=NA_CODE, try_parse_dates=True)
    species = species_columns(df)
    return df.with_columns([pl.col(c).cast(pl.Float64) for c in species])

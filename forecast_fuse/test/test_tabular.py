import numpy as np
import polars as pl
import pytest

import forecast_fuse as ff
from forecast_fuse import tabular
from forecast_fuse.schema_ctx import UnmatchedTimeError

from conftest import make_forecast

SUMMARY_COLUMNS = ['time', 'depth', 'statistic', 'obs_flag', 'species_1', 'species_2',
                   'forecast', 'data_assimilation']


def test_ensemble_table(forecast):
    tensor, flags = forecast
    df = ff.ensemble_table(tensor, flags)
    assert df.height == 30 * 3 * 10 * 2
    assert df.columns == ['time', 'depth', 'ensemble', 'obs_flag', 'species_1', 'species_2',
                          'forecast', 'data_assimilation']
    assert df['time'].dtype == pl.Date
    assert df['forecast'].null_count() == 0
    assert df['data_assimilation'].null_count() == 0

    # flags broadcast over depth x ensemble x obs_flag of each time
    per_time = df.group_by('time').agg(pl.col('forecast').n_unique(), pl.len())
    assert (per_time['forecast'] == 1).all()
    assert (per_time['len'] == 3 * 10 * 2).all()

    row = df.filter((pl.col('depth') == 3.0) & (pl.col('ensemble') == 7) & (pl.col('obs_flag') == 2))
    row = row.sort('time')
    assert np.allclose(row['species_1'].to_numpy(), tensor.values[:, 1, 6, 1, 0])
    assert row['forecast'].to_list() == flags.forecast.tolist()


@pytest.mark.parametrize("n_days, depth, n_ensemble", [(1, [1], 1), (4, [1, 2], 3), (7, [0.5, 1, 2, 4], 5)])
def test_ensemble_row_count(n_days, depth, n_ensemble):
    tensor, flags = make_forecast(n_days=n_days, depth=depth, n_ensemble=n_ensemble)
    assert tabular.ensemble_table(tensor, flags).height == n_days * len(depth) * n_ensemble * 2


def test_unmatched_time(forecast):
    tensor, flags = forecast
    partial = ff.FlagSequences(flags.time[:-2], flags.forecast[:-2], flags.data_assimilation[:-2])
    with pytest.raises(UnmatchedTimeError) as ei:
        tabular.ensemble_table(tensor, partial)
    assert "2001-04-02" in str(ei.value)
    assert ei.value.path == "flags/time"


def test_missing_values_as_na(smart_tmp_path):
    tensor, flags = make_forecast(n_days=2, depth=[1], n_ensemble=2)
    values = tensor.values.copy()
    values[0, 0, 0, 0, 1] = np.nan
    df = tabular.ensemble_table(ff.ForecastTensor(tensor.dims, values), flags)
    assert df['species_2'].null_count() == 1

    text = tabular.csv_text(df)
    assert text.splitlines()[1].startswith("2001-03-04,1.0,1,1,")
    assert text.splitlines()[1].split(",")[5] == "NA"

    path = tabular.write_table(df, smart_tmp_path / "ensemble.csv")
    back = tabular.read_table(path)
    assert back.height == df.height
    assert back['species_2'].null_count() == 1
    assert back['time'].dtype == pl.Date


def test_summary_long(forecast):
    tensor, flags = forecast
    long = tabular.summary_long(ff.ensemble_table(tensor, flags))
    assert long.height == 30 * 3 * 2 * 2 * 4

    latent = set(long.filter(pl.col('obs_flag') == 1)['statistic'].unique().to_list())
    observed = set(long.filter(pl.col('obs_flag') == 2)['statistic'].unique().to_list())
    assert latent == {'mean', 'se', 'Conf_interv_02.5', 'Conf_interv_97.5'}
    assert observed == {'mean', 'sd', 'Pred_interv_02.5', 'Pred_interv_97.5'}

    group = long.filter((pl.col('time') == pl.date(2001, 3, 10)) & (pl.col('depth') == 5.0)
                        & (pl.col('obs_flag') == 2) & (pl.col('species') == 'species_1'))
    assert group['statistic'].to_list() == ['mean', 'sd', 'Pred_interv_02.5', 'Pred_interv_97.5']
    members = tensor.values[6, 2, :, 1, 0]
    stats = dict(zip(group['statistic'], group['value']))
    assert np.isclose(stats['mean'], members.mean())
    assert np.isclose(stats['sd'], members.std(ddof=1))
    assert np.isclose(stats['Pred_interv_02.5'], np.quantile(members, 0.025))
    assert np.isclose(stats['Pred_interv_97.5'], np.quantile(members, 0.975))


def test_summary_table(forecast):
    tensor, flags = forecast
    summary = ff.summary_table(ff.ensemble_table(tensor, flags))
    assert summary.columns == SUMMARY_COLUMNS
    assert summary.height == 30 * 3 * 2 * 4
    # both species values in one row, order of statistics kept within a group
    first = summary.head(4)
    assert first['statistic'].to_list() == ['mean', 'se', 'Conf_interv_02.5', 'Conf_interv_97.5']
    assert np.isclose(first['species_2'][0], tensor.values[0, 0, :, 0, 1].mean())
    assert summary['forecast'].null_count() == 0


def test_single_member_spread():
    tensor, flags = make_forecast(n_days=2, depth=[1], n_ensemble=1)
    long = tabular.summary_long(tabular.ensemble_table(tensor, flags))
    spread = long.filter(pl.col('statistic').is_in(['se', 'sd']))['value']
    assert spread.null_count() == len(spread)
    mean = long.filter(pl.col('statistic') == 'mean')['value']
    bound = long.filter(pl.col('statistic') == 'Conf_interv_02.5')
    assert mean.null_count() == 0
    assert np.allclose(bound['value'].to_numpy(),
                       long.filter((pl.col('statistic') == 'mean') & (pl.col('obs_flag') == 1))['value'].to_numpy())

    text = tabular.csv_text(tabular.summary_table(tabular.ensemble_table(tensor, flags)))
    assert "NaN" not in text
    se_line = [line for line in text.splitlines() if line.startswith("2001-03-04,1.0,se,1,")][0]
    assert se_line.split(",")[4:6] == ["NA", "NA"]


def test_absent_species_summary_na():
    tensor, flags = make_forecast(n_days=2, depth=[1], n_ensemble=3)
    values = tensor.values.copy()
    values[:, :, :, 0, 1] = np.nan
    summary = tabular.summary_table(tabular.ensemble_table(ff.ForecastTensor(tensor.dims, values), flags))
    text = tabular.csv_text(summary)
    assert "NaN" not in text
    latent = [line.split(",") for line in text.splitlines()[1:] if line.split(",")[3] == "1"]
    assert latent
    # species_2 column of every statistic is missing, species_1 is present
    assert all(row[5] == "NA" and row[4] != "NA" for row in latent)

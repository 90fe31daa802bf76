import hashlib
import shutil
import xml.etree.ElementTree as ET

import polars as pl
import pytest

import forecast_fuse as ff
from forecast_fuse import package, tabular
from forecast_fuse.package import FFOptionError
from forecast_fuse.schema_ctx import SchemaValidationError


@pytest.fixture
def clean_workdir(smart_tmp_path):
    shutil.rmtree(smart_tmp_path)
    smart_tmp_path.mkdir(parents=True)
    return smart_tmp_path


def test_package_forecast(forecast, metadata_path, clean_workdir):
    tensor, flags = forecast
    written = ff.package_forecast(tensor, flags, metadata_path, WORKDIR=str(clean_workdir),
                                  METADATA_YAML="forecast_eml.yaml", METADATA_JSONLD="forecast.jsonld")
    assert set(written) == {'container', 'ensemble_csv', 'summary_csv', 'metadata_xml',
                            'metadata_yaml', 'metadata_jsonld'}
    for path in written.values():
        assert path.exists()
    # container url from the 'options' section of the document
    assert written['container'] == clean_workdir / "logistic-forecast-ensemble.zarr.zip"

    ds = ff.read_forecast_container(written['container'])
    assert ds['species_1'].shape == (30, 3, 10, 2)
    assert ds.attrs['forecast_iteration_id'] == "20010304T060000"
    assert "Packaging forecast iteration '20010304T060000'" in ds.attrs['history']

    ensemble = tabular.read_table(written['ensemble_csv'])
    summary = pl.read_csv(written['summary_csv'])
    assert ensemble.height == 1800
    assert summary.height == 720

    root = ET.parse(written['metadata_xml']).getroot()
    tables = root.findall('dataset/dataTable')
    assert [t.findtext('entityName') for t in tables] == ['forecast_ensemble.csv', 'forecast_summary.csv']
    for table, key in zip(tables, ['ensemble_csv', 'summary_csv']):
        body = written[key].read_bytes()
        assert table.findtext('physical/authentication') == hashlib.md5(body).hexdigest()
        assert table.findtext('physical/size') == str(len(body))


def test_invalid_record_writes_nothing(forecast, metadata_path, clean_workdir):
    tensor, flags = forecast
    text = metadata_path.read_text().replace('packageId: "20010304T060000"', 'packageId: "20010305T060000"')
    with pytest.raises(SchemaValidationError) as ei:
        package.package_forecast(tensor, flags, text, WORKDIR=clean_workdir)
    assert [f.path for f in ei.value.failures] == ['packageId']
    assert list(clean_workdir.iterdir()) == []


def test_unmatched_time_writes_nothing(forecast, metadata_path, clean_workdir):
    tensor, flags = forecast
    partial = ff.FlagSequences(flags.time[1:], flags.forecast[1:], flags.data_assimilation[1:])
    with pytest.raises(ff.UnmatchedTimeError):
        package.package_forecast(tensor, partial, metadata_path, WORKDIR=clean_workdir)
    assert list(clean_workdir.iterdir()) == []


def test_options(monkeypatch):
    monkeypatch.delenv("FF_SUMMARY_CSV", raising=False)
    monkeypatch.delenv("FF_CONTAINER_URL", raising=False)
    options = package.forecast_options(dict(CONTAINER_URL="doc.zip", SUMMARY_CSV="doc.csv"),
                                       CONTAINER_URL="kw.zip", WORKDIR="kw")
    assert options == dict(CONTAINER_URL="doc.zip", SUMMARY_CSV="doc.csv", WORKDIR="kw")

    monkeypatch.setenv("FF_SUMMARY_CSV", "env.csv")
    options = package.forecast_options(dict(SUMMARY_CSV="doc.csv"))
    assert options['SUMMARY_CSV'] == "env.csv"

    with pytest.raises(FFOptionError):
        package.forecast_options(STORE_URL="x")
    with pytest.raises(FFOptionError) as ei:
        package._get_option({}, 'CONTAINER_URL')
    assert "CONTAINER_URL" in str(ei.value)
    assert package._get_option({}, 'WORKDIR', default='.') == '.'


def test_env_options(forecast, record, clean_workdir, monkeypatch):
    tensor, flags = forecast
    monkeypatch.setenv("FF_CONTAINER_URL", "zip://env.zarr.zip")
    monkeypatch.setenv("FF_ENSEMBLE_CSV", "env_ensemble.csv")
    written = package.package_forecast(tensor, flags, record, WORKDIR=clean_workdir)
    assert written['container'] == clean_workdir / "env.zarr.zip"
    assert written['ensemble_csv'] == clean_workdir / "env_ensemble.csv"


def test_missing_container_url(forecast, record, clean_workdir, monkeypatch):
    monkeypatch.delenv("FF_CONTAINER_URL", raising=False)
    tensor, flags = forecast
    with pytest.raises(FFOptionError):
        package.package_forecast(tensor, flags, record, WORKDIR=clean_workdir)

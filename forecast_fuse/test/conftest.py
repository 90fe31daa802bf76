import logging
import pytest
from pathlib import Path

import numpy as np

import forecast_fuse as ff
from forecast_fuse import metadata

script_dir = Path(__file__).parent
inputs_dir = script_dir / "inputs"

REFERENCE_START = "2001-03-04"
REFERENCE_DEPTH = [1, 3, 5]
REFERENCE_ENSEMBLE = 10


@pytest.fixture
def smart_tmp_path(request):
    # Use persistent workdir for local/dev runs, one subdir per test
    workdir = script_dir / "workdir" / request.node.name
    workdir.mkdir(parents=True, exist_ok=True)
    yield workdir


@pytest.fixture
def attach_logger():
    """Capture records of the forecast_fuse loggers into a list."""
    records = []

    class ListHandler(logging.Handler):
        def emit(self, record):
            records.append(record)

    logger = logging.getLogger("forecast_fuse")
    handler = ListHandler(logging.DEBUG)
    old_level = logger.level
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    yield records
    logger.removeHandler(handler)
    logger.setLevel(old_level)


def make_forecast(n_days=30, depth=REFERENCE_DEPTH, n_ensemble=REFERENCE_ENSEMBLE, seed=1234):
    """Two species logistic growth ensemble, stands in for the simulator."""
    dims = ff.DimensionCatalog.daily(REFERENCE_START, n_days, depth, n_ensemble)
    rng = np.random.default_rng(seed)
    values = np.empty(dims.shape)
    n_t, n_depth, n_ens, n_obs, n_species = dims.shape
    for i_s in range(n_species):
        r = rng.normal(0.3, 0.05, size=(n_depth, n_ens))
        n = np.full((n_depth, n_ens), 0.5)
        for i_t in range(n_t):
            n = n + r * n * (1 - n / 10.0) + rng.normal(0, 0.05, size=n.shape)
            values[i_t, :, :, 0, i_s] = n
            values[i_t, :, :, 1, i_s] = n + rng.normal(0, 0.1, size=n.shape)
    tensor = ff.ForecastTensor(dims, values)
    forecast = [0] * (n_days // 2) + list(range(1, n_days - n_days // 2 + 1))
    assimilation = [1] * (n_days // 2) + [0] * (n_days - n_days // 2)
    flags = ff.FlagSequences.for_dims(dims, forecast, assimilation)
    return tensor, flags


@pytest.fixture
def forecast():
    return make_forecast()


@pytest.fixture
def identifiers():
    return ff.ForecastIdentifiers("ff_test_project", "v1", "20010304T060000")


@pytest.fixture
def metadata_path():
    return inputs_dir / "forecast_metadata.yaml"


@pytest.fixture
def record(metadata_path):
    return metadata.deserialize(metadata_path)

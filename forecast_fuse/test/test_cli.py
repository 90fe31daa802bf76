import shutil

import polars as pl
import pytest

from forecast_fuse import package_forecast, tabular
from ff.cli import main, peeloff_dot_args


@pytest.fixture
def packaged(forecast, metadata_path, smart_tmp_path):
    tensor, flags = forecast
    shutil.rmtree(smart_tmp_path)
    smart_tmp_path.mkdir(parents=True)
    written = package_forecast(tensor, flags, metadata_path, WORKDIR=smart_tmp_path,
                                  METADATA_YAML="forecast_eml.yaml")
    return smart_tmp_path, written


def test_help(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["--help"])
    # argparse uses exit code 0 for --help
    assert exc.value.code == 0

    out, err = capsys.readouterr()
    assert "Forecast packaging command line tool" in out
    for command in ["validate", "summarize", "show"]:
        assert command in out


def test_peeloff_dot_args():
    kwargs, remaining = peeloff_dot_args(["show", "--opt.WORKDIR=out", "c.zip", "--opt.X=a=b"], "--opt")
    assert kwargs == dict(WORKDIR="out", X="a=b")
    assert remaining == ["show", "c.zip"]
    with pytest.raises(SystemExit):
        peeloff_dot_args(["--opt.WORKDIR"], "--opt")


def test_validate(packaged, metadata_path, capsys):
    workdir, written = packaged
    assert main(["validate", "forecast_eml.yaml", f"--opt.WORKDIR={workdir}"]) == 0
    out, err = capsys.readouterr()
    assert "VALID" in out and "packageId=20010304T060000" in out

    # the input document has no data tables
    assert main(["validate", str(metadata_path)]) == 1
    out, err = capsys.readouterr()
    assert "INVALID" in out
    assert "dataset/dataTable" in out


def test_validate_reports_paths(smart_tmp_path, metadata_path, capsys):
    text = metadata_path.read_text()
    text = text.replace("        size: 10\n", "").replace("status: present", "status: sometimes")
    bad = smart_tmp_path / "bad_metadata.yaml"
    bad.write_text(text)
    assert main(["validate", str(bad)]) == 1
    out, err = capsys.readouterr()
    assert "additionalMetadata/forecast/obs_error/status" in out


def test_summarize(packaged, capsys):
    workdir, written = packaged
    args = ["summarize", written['ensemble_csv'].name, "cli_summary.csv", f"--opt.WORKDIR={workdir}"]
    assert main(args) == 0
    summary = tabular.read_table(workdir / "cli_summary.csv")
    assert summary.height == 720
    assert summary.equals(tabular.read_table(written['summary_csv']))

    assert main(args[:2] + ["cli_summary_long.csv", "--long", args[3]]) == 0
    long = pl.read_csv(workdir / "cli_summary_long.csv")
    assert long.height == 1440
    assert "species" in long.columns


def test_show(packaged, capsys):
    workdir, written = packaged
    assert main(["show", f"zip://{written['container'].name}", f"--opt.WORKDIR={workdir}"]) == 0
    out, err = capsys.readouterr()
    assert "species_1" in out
    assert "forecast_iteration_id" in out
    assert main(["show", str(written['container']), "--raw"]) == 0

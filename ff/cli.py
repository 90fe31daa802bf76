# ff/cli.py
from typing import *
import sys
import argparse
import logging
from pathlib import Path

from dotenv import load_dotenv

from forecast_fuse import array_storage, package, tabular, validation
from forecast_fuse.logger import setup_logging
from forecast_fuse.schema_ctx import SchemaError

log = logging.getLogger(__name__)


def peeloff_dot_args(argv: List[str], prefix: str) -> Tuple[Dict[str, str], List[str]]:
    """
    Peel off `argv` items in form
        <prefix>.<KEY>=<VALUE>

    Return:
    kwargs : dict
        Mapping KEY -> VALUE (strings).
    remaining : list[str]
        The argv list without the peeled-off options.

    Example:
        prefix="--opt"
        argument: "--opt.WORKDIR=/data/forecasts"
    """
    kwargs = {}
    remaining = []
    prefix = f"{prefix}."
    for arg in argv:
        if not arg.startswith(prefix):
            remaining.append(arg)
            continue
        key, sep, value = arg[len(prefix):].partition("=")
        if not sep or not key:
            raise SystemExit(f"Invalid option '{arg}'. Expected format {prefix}<KEY>=<VALUE>.")
        kwargs[key] = value
    return kwargs, remaining


def _workdir(options: Dict[str, Any]) -> Path:
    return Path(options.get('WORKDIR', '.'))


def cmd_validate(args, options: dict) -> int:
    path = _workdir(options) / args.metadata
    try:
        record, _, source = package.load_metadata(path)
        validated = validation.validate(record, source=source)
    except SchemaError as e:
        print(f"INVALID {path}")
        for failure in getattr(e, 'failures', None) or [e]:
            print(f"  {failure.path}: {failure.message}")
        return 1
    print(f"VALID {path} packageId={validated.package_id}")
    return 0


def cmd_summarize(args, options: dict) -> int:
    workdir = _workdir(options)
    ensemble = tabular.read_table(workdir / args.ensemble_csv)
    if args.long:
        summary = tabular.summary_long(ensemble)
    else:
        summary = tabular.summary_table(ensemble)
    tabular.write_table(summary, workdir / args.summary_csv)
    print(f"{args.summary_csv}: {summary.height} rows")
    return 0


def cmd_show(args, options: dict) -> int:
    ds = array_storage.read_forecast_container(args.container, mask=not args.raw,
                                               workdir=_workdir(options))
    print(ds)
    return 0


COMMANDS = dict(validate=cmd_validate, summarize=cmd_summarize, show=cmd_show)


def arg_parser():
    parser = argparse.ArgumentParser(
        prog="ff", description="Forecast packaging command line tool",
        epilog="Options --opt.<KEY>=<VALUE> (e.g. --opt.WORKDIR=out), or environment FF_<KEY>.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser(
        "validate", help="Validate a metadata YAML document, list every failing field.")
    validate_parser.add_argument("metadata", help="Path to metadata YAML file")

    summarize_parser = subparsers.add_parser(
        "summarize", help="Compute the summary statistics table from a full ensemble CSV table.")
    summarize_parser.add_argument("ensemble_csv", help="Full ensemble CSV table")
    summarize_parser.add_argument("summary_csv", help="Output summary CSV table")
    summarize_parser.add_argument("--long", action="store_true",
                                  help="One row per species instead of species columns")

    show_parser = subparsers.add_parser("show", help="Print the dataset of a forecast container.")
    show_parser.add_argument("container", help="Container URL: zip://<path>, file://<path> or a path")
    show_parser.add_argument("--raw", action="store_true", help="Keep fill values and numeric time")
    return parser


def main(argv=None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    load_dotenv()
    setup_logging()

    # First peel off --opt.* into kwargs
    opt_kwargs, remaining = peeloff_dot_args(argv, '--opt')
    parser = arg_parser()
    args = parser.parse_args(remaining)
    try:
        options = package.forecast_options(**opt_kwargs)
    except package.FFOptionError as e:
        parser.error(str(e))

    return COMMANDS[args.command](args, options)


if __name__ == "__main__":
    raise SystemExit(main())

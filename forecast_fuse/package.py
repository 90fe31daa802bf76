"""
End-to-end packaging of one forecast iteration.

Order of operations:
1. tables are derived from the tensor
2. the metadata record is completed (data tables, coverage) and validated
   against the tables
3. only a valid record lets anything be written: the container, both CSV
   tables and the metadata documents

Output options are layered: keyword arguments, overwritten by the 'options'
section of the metadata document, overwritten by environment variables 'FF_<KEY>'.
"""
import logging
import os
from pathlib import Path
from typing import *

import attrs
import polars as pl
import yaml

from . import array_storage, exchange, metadata, tabular, validation
from .attributes import AttributeCatalog, ensemble_attributes, summary_attributes
from .forecast_data import ForecastTensor, FlagSequences
from .logger import ContainerLogHandler
from .metadata import MetadataRecord, Coverage, TemporalCoverage

log = logging.getLogger(__name__)

OPTION_KEYS = {'WORKDIR', 'CONTAINER_URL', 'ENSEMBLE_CSV', 'SUMMARY_CSV',
               'METADATA_XML', 'METADATA_YAML', 'METADATA_JSONLD'}
DEFAULT_OPTIONS = dict(
    WORKDIR=".",
    ENSEMBLE_CSV="forecast_ensemble.csv",
    SUMMARY_CSV="forecast_summary.csv",
    METADATA_XML="forecast_eml.xml",
)


class FFOptionError(Exception):
    pass


def _get_option(options, key, **kwargs):
    try:
        return options[key]
    except KeyError:
        pass

    try:
        return kwargs['default']
    except KeyError:
        pass

    raise FFOptionError(f"Missing mandatory option '{key}'.")


def forecast_options(document_options: Dict[str, Any] = None, **kwargs) -> Dict[str, Any]:
    """
    Prepare output options:
    - get kwargs
    - overwrite by the 'options' section of the metadata document
    - overwrite by environment variables
    """
    options = {key: kwargs[key] for key in OPTION_KEYS if key in kwargs}
    unknown = set(kwargs) - OPTION_KEYS
    if unknown:
        raise FFOptionError(f"Unknown options: {sorted(unknown)}, expected some of {sorted(OPTION_KEYS)}.")

    document_options = document_options or {}
    options.update({key: document_options[key] for key in OPTION_KEYS if key in document_options})

    e_key = lambda key: f"FF_{key}"  # Environment variable key prefix
    env_options = {key: os.environ[e_key(key)] for key in OPTION_KEYS if e_key(key) in os.environ}
    options.update(env_options)
    return options


MetadataSource = Union[MetadataRecord, Path, str, bytes]


def load_metadata(source: MetadataSource) -> Tuple[MetadataRecord, Dict[str, Any], Optional[str]]:
    """
    Record, the document 'options' section and the source description.
    """
    if isinstance(source, MetadataRecord):
        return source, {}, None
    description = None
    if isinstance(source, Path):
        description = str(source)
        source = source.read_text(encoding="utf-8")
    if isinstance(source, bytes):
        source = source.decode("utf-8")
    raw = yaml.safe_load(source) or {}
    record = metadata.deserialize(source, source_description=description)
    return record, raw.get('options') or {}, description


def _table_entry(record: MetadataRecord, entity_name: str, df: pl.DataFrame,
                 default_catalog: AttributeCatalog, description: str) -> metadata.DataTable:
    """
    Data table for the written CSV. Attribute list of the document is used if present,
    physical description is always computed from the CSV body.
    """
    catalog, text = default_catalog, description
    for table in record.dataset.data_tables:
        if table.entity_name == entity_name:
            catalog = table.attributes if table.attributes is not None else default_catalog
            text = table.description or description
    return metadata.data_table(entity_name, text, catalog.with_ranges(df), df)


def complete_record(record: MetadataRecord, tensor: ForecastTensor,
                    tables: Dict[str, Tuple[pl.DataFrame, AttributeCatalog, str]]) -> MetadataRecord:
    """
    Copy of the record with the data tables of the written CSV files
    and the temporal coverage of the forecast.
    """
    data_tables = [_table_entry(record, name, df, catalog, text)
                   for name, (df, catalog, text) in tables.items()]
    data_tables += [t for t in record.dataset.data_tables if t.entity_name not in tables]

    coverage = record.dataset.coverage or Coverage()
    if coverage.temporal is None:
        coverage = attrs.evolve(coverage, temporal=TemporalCoverage.from_dims(tensor.dims))
    dataset = attrs.evolve(record.dataset, data_tables=data_tables, coverage=coverage)
    return attrs.evolve(record, dataset=dataset)


def package_forecast(tensor: ForecastTensor, flags: FlagSequences,
                     metadata_source: MetadataSource, **kwargs) -> Dict[str, Path]:
    """
    Validate and write all outputs of a forecast iteration.
    Return mapping of output kind to the written path.

    Raises SchemaValidationError (or its subclasses) before any file is written.
    """
    record, document_options, source = load_metadata(metadata_source)
    options = forecast_options(document_options, **kwargs)
    workdir = Path(_get_option(options, 'WORKDIR', default=DEFAULT_OPTIONS['WORKDIR']))
    container_url = _get_option(options, 'CONTAINER_URL')
    out_path = lambda key: workdir / _get_option(options, key, default=DEFAULT_OPTIONS[key])

    package_logger = logging.getLogger(__package__)
    history = ContainerLogHandler(path=str(record.package_id)).attach(package_logger)
    try:
        log.info(f"Packaging forecast iteration '{record.package_id}'.")
        array_storage.check_units(tensor.dims)
        ensemble = tabular.ensemble_table(tensor, flags)
        summary = tabular.summary_table(ensemble)

        species = tensor.dims.species_names
        ensemble_name = out_path('ENSEMBLE_CSV').name
        summary_name = out_path('SUMMARY_CSV').name
        tables = {
            ensemble_name: (ensemble, ensemble_attributes(species), "Full ensemble forecast"),
            summary_name: (summary, summary_attributes(species), "Summary statistics of the ensemble forecast"),
        }
        record = complete_record(record, tensor, tables)
        validated = validation.validate(record, {name: t[0] for name, t in tables.items()}, source)

        identifiers = validated.record.identifiers
        written = dict(container=array_storage.write_forecast_container(
            container_url, tensor, flags, identifiers, history=history.history, workdir=workdir))
        written['ensemble_csv'] = tabular.write_table(ensemble, out_path('ENSEMBLE_CSV'))
        written['summary_csv'] = tabular.write_table(summary, out_path('SUMMARY_CSV'))

        written['metadata_xml'] = out_path('METADATA_XML')
        exchange.to_eml_xml(validated, written['metadata_xml'])
        optional = dict(metadata_yaml=('METADATA_YAML', exchange.to_yaml),
                        metadata_jsonld=('METADATA_JSONLD', exchange.to_jsonld))
        for kind, (key, writer) in optional.items():
            if key in options:
                written[kind] = workdir / options[key]
                writer(validated, written[kind])
        log.info(f"Forecast iteration '{record.package_id}' packaged: {sorted(written)}")
    finally:
        history.detach(package_logger)
    return written

"""
Two pass validation of the metadata record.

1. base schema: fields required by the exchange schema are present and well typed
2. extension: identifiers, forecast block, uncertainty rules, variable type tags
   and optionally the attribute lists against the tables they describe

All failures of both passes are collected, any failure raises a single
SchemaValidationError listing every failing path. Only a ValidatedRecord
can be serialized.
"""
import copy
import datetime
import logging
from typing import *

import attrs
import polars as pl

from . import units
from .attributes import AttributeCatalog
from .metadata import MetadataRecord, Person, Coverage, convert_value
from .schema_ctx import SchemaCtx, SchemaValidationError, default_logger

log = logging.getLogger(__name__)

Failures = List[SchemaValidationError]


@attrs.define(frozen=True)
class ValidatedRecord:
    """
    Record that passed validation together with the snapshot of its document.
    Both are private copies, later changes of the source record are not reflected.
    """
    _record: MetadataRecord
    _document: Dict[str, Any]

    @property
    def record(self) -> MetadataRecord:
        return copy.deepcopy(self._record)

    @property
    def document(self) -> Dict[str, Any]:
        return copy.deepcopy(self._document)

    @property
    def package_id(self) -> str:
        return self._record.package_id


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _require(failures: Failures, ctx: SchemaCtx, value, what: str, kind: type = str):
    if _blank(value):
        failures.append(SchemaValidationError(f"Missing {what}.", ctx))
    elif not isinstance(value, kind):
        failures.append(SchemaValidationError(
            f"{what} must be of type {kind.__name__}, got {type(value).__name__}.", ctx))


# ----------------------- Pass 1: base schema ----------------------- #

def _person_problems(person: Optional[Person], ctx: SchemaCtx, what: str) -> Failures:
    if person is None:
        return [SchemaValidationError(f"Missing {what}.", ctx)]
    if _blank(person.sur_name) and _blank(person.organization):
        return [SchemaValidationError(
            f"{what} requires individualName/surName or organizationName.", ctx)]
    return []


def _coverage_problems(coverage: Optional[Coverage], ctx: SchemaCtx) -> Failures:
    failures = []
    if coverage is None:
        return failures
    temporal = coverage.temporal
    if temporal is not None:
        t_ctx = ctx.dive('temporalCoverage')
        if temporal.begin is None or temporal.end is None:
            failures.append(SchemaValidationError("Temporal coverage requires beginDate and endDate.", t_ctx))
        elif _as_date(temporal.begin) > _as_date(temporal.end):
            failures.append(SchemaValidationError(
                f"beginDate {temporal.begin} is after endDate {temporal.end}.", t_ctx))
    geo = coverage.geographic
    if geo is not None:
        g_ctx = ctx.dive('geographicCoverage')
        if _blank(geo.description):
            failures.append(SchemaValidationError("Missing geographicDescription.",
                                                  g_ctx.dive('geographicDescription')))
        box_ctx = g_ctx.dive('boundingCoordinates')
        bounds = dict(westBoundingCoordinate=(geo.west, 180), eastBoundingCoordinate=(geo.east, 180),
                      northBoundingCoordinate=(geo.north, 90), southBoundingCoordinate=(geo.south, 90))
        for key, (value, limit) in bounds.items():
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                failures.append(SchemaValidationError(f"{key} must be a number, got {value!r}.", box_ctx.dive(key)))
            elif abs(value) > limit:
                failures.append(SchemaValidationError(f"{key} = {value} out of [-{limit}, {limit}].",
                                                      box_ctx.dive(key)))
        if all(isinstance(v, (int, float)) for v in (geo.north, geo.south)) and geo.south > geo.north:
            failures.append(SchemaValidationError("southBoundingCoordinate exceeds northBoundingCoordinate.",
                                                  box_ctx))
    for i, taxon in enumerate(coverage.taxonomic):
        if _blank(taxon.genus):
            failures.append(SchemaValidationError("Taxon requires a genus.",
                                                  ctx.dive('taxonomicCoverage', i, 'Genus')))
    return failures


def _as_date(value) -> datetime.date:
    return value.date() if isinstance(value, datetime.datetime) else value


def base_problems(record: MetadataRecord, ctx: SchemaCtx) -> Failures:
    failures = []
    dataset = record.dataset
    d_ctx = ctx.dive('dataset')
    _require(failures, d_ctx.dive('title'), dataset.title, "title")
    if not dataset.creators:
        failures.append(SchemaValidationError("At least one creator is required.", d_ctx.dive('creator')))
    for i, creator in enumerate(dataset.creators):
        failures += _person_problems(creator, d_ctx.dive('creator', i), "creator")
    failures += _person_problems(dataset.contact, d_ctx.dive('contact'), "contact")
    _require(failures, d_ctx.dive('pubDate'), dataset.pub_date, "pubDate", datetime.date)

    if not dataset.data_tables:
        failures.append(SchemaValidationError("At least one dataTable is required.", d_ctx.dive('dataTable')))
    for i, table in enumerate(dataset.data_tables):
        t_ctx = d_ctx.dive('dataTable', i)
        _require(failures, t_ctx.dive('entityName'), table.entity_name, "entityName")
        if table.physical is None:
            failures.append(SchemaValidationError("Missing physical description.", t_ctx.dive('physical')))
        else:
            _require(failures, t_ctx.dive('physical', 'objectName'), table.physical.object_name, "objectName")
        if table.attributes is None or len(table.attributes) == 0:
            failures.append(SchemaValidationError("attributeList must not be empty.", t_ctx.dive('attributeList')))

    failures += _coverage_problems(dataset.coverage, d_ctx.dive('coverage'))
    _require(failures, ctx.dive('packageId'), record.package_id, "packageId")
    _require(failures, ctx.dive('idSystem'), record.id_system, "idSystem")
    return failures


# ----------------------- Pass 2: forecast extension ----------------------- #

def _time_quantity_problem(text, what: str, ctx: SchemaCtx) -> Failures:
    if _blank(text):
        return [SchemaValidationError(f"Missing {what}.", ctx)]
    try:
        quantity = units.ureg.Quantity(str(text))
        ok = quantity.check('[time]')
    except Exception as e:
        return [SchemaValidationError(f"{what} '{text}' is not a time quantity: {e}", ctx)]
    if not ok:
        return [SchemaValidationError(f"{what} '{text}' has no time dimension.", ctx)]
    return []


def extension_problems(record: MetadataRecord, ctx: SchemaCtx,
                       tables: Mapping[str, pl.DataFrame] = None) -> Failures:
    failures = []
    forecast = record.forecast
    f_ctx = ctx.dive('additionalMetadata', 'forecast')
    ids = forecast.identifiers
    for key, value in ids.global_attrs().items():
        _require(failures, f_ctx.dive(key), value, key)
    if not _blank(ids.iteration_id) and record.package_id != ids.iteration_id:
        failures.append(SchemaValidationError(
            f"packageId '{record.package_id}' differs from forecast_iteration_id '{ids.iteration_id}'.",
            ctx.dive('packageId')))

    failures += _time_quantity_problem(forecast.timestep, "timestep", f_ctx.dive('timestep'))
    failures += _time_quantity_problem(forecast.horizon, "forecast_horizon", f_ctx.dive('forecast_horizon'))
    if forecast.issue_time is None:
        failures.append(SchemaValidationError("Missing forecast_issue_time.", f_ctx.dive('forecast_issue_time')))
    _require(failures, f_ctx.dive('metadata_standard_version'), forecast.standard_version,
             "metadata_standard_version")

    model = forecast.model_description
    m_ctx = f_ctx.dive('model_description')
    if model is None:
        failures.append(SchemaValidationError("Missing model_description.", m_ctx))
    else:
        _require(failures, m_ctx.dive('name'), model.name, "model name")
        if not _blank(model.model_id) and model.model_id != ids.model_id:
            failures.append(SchemaValidationError(
                f"model_description id '{model.model_id}' differs from forecast_model_id '{ids.model_id}'.",
                m_ctx.dive('forecast_model_id')))

    failures += forecast.uncertainty.problems(f_ctx)

    d_ctx = ctx.dive('dataset')
    for i, table in enumerate(record.dataset.data_tables):
        if table.attributes is None:
            continue
        a_ctx = d_ctx.dive('dataTable', i, 'attributeList')
        failures += table.attributes.problems(a_ctx)
        if tables is not None and table.entity_name in tables:
            failures += _table_problems(table.attributes, tables[table.entity_name], table.entity_name)
    return failures


def _table_problems(catalog: AttributeCatalog, df: pl.DataFrame, name: str) -> Failures:
    try:
        catalog.check_table(df, name)
    except SchemaValidationError as e:
        return e.failures or [e]
    return []


def recommendations(record: MetadataRecord, ctx: SchemaCtx):
    f_ctx = ctx.dive('additionalMetadata', 'forecast')
    return record.forecast.uncertainty.recommendations(f_ctx)


def validate(record: MetadataRecord, tables: Mapping[str, pl.DataFrame] = None,
             source: str = None) -> ValidatedRecord:
    """
    Validate the record, `tables` maps dataTable entity names to the described tables.
    Raise SchemaValidationError with all failures, or return the validated snapshot.
    """
    ctx = SchemaCtx(addr=[], file=source, logger=default_logger())
    failures = base_problems(record, ctx) + extension_problems(record, ctx, tables)
    for warning in recommendations(record, ctx):
        log.warning(str(warning))
    if failures:
        for f in failures:
            log.error(str(f))
        raise SchemaValidationError(
            f"Metadata record '{record.package_id}' is not valid, {len(failures)} failure(s):",
            ctx, failures)

    snapshot = copy.deepcopy(record)
    log.info(f"Metadata record '{record.package_id}' is valid.")
    return ValidatedRecord(snapshot, convert_value(snapshot))

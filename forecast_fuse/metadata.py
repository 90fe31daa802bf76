"""
Classes to represent the forecast metadata record. It enables:
- assembling the record from forecast identifiers, coverage and attribute catalogs
- deserialization from a YAML document with error paths pointing into the document
- conversion to a plain dictionary with a stable round trip

Documents are written by `exchange`, which accepts only a validated record.

Layout of the document (keys follow the EML naming):

    packageId: <forecast_iteration_id>
    idSystem: datetime
    dataset:
      title, creator, contact, pubDate, intellectualRights, abstract,
      keywordSet, methods, coverage, dataTable
    additionalMetadata:
      forecast:
        timestep, forecast_horizon, forecast_issue_time, forecast_*_id,
        metadata_standard_version, model_description,
        initial_conditions, drivers, parameters, random_effects,
        process_error, obs_error

Required fields are checked by the validator, so that all missing
fields of a document are reported at once.
"""
import datetime
import hashlib
from pathlib import Path
from typing import *

import attrs
import dateutil.parser
import polars as pl
import yaml

from . import tabular
from .attributes import AttributeCatalog
from .dimensions import DimensionCatalog
from .forecast_data import ForecastIdentifiers
from .schema_ctx import ContextCfg, SchemaCtx, default_logger
from .uncertainty import ForecastUncertainty
from . import logger as ff_logger


METADATA_STANDARD_VERSION = "0.3"
DEFAULT_ID_SYSTEM = "datetime"

DateLike = datetime.date | datetime.datetime


def _opt_date(value) -> Optional[DateLike]:
    if value is None or isinstance(value, (datetime.date, datetime.datetime)):
        return value
    parsed = dateutil.parser.parse(str(value), yearfirst=True)
    if parsed.time() == datetime.time(0) and len(str(value).strip()) <= 10:
        return parsed.date()
    return parsed


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


@attrs.define
class Person:
    given_name: Optional[str] = None
    sur_name: Optional[str] = None
    email: Optional[str] = None
    organization: Optional[str] = None
    user_id: Optional[str] = None

    @classmethod
    def from_cfg(cls, cfg: ContextCfg) -> 'Person':
        name = cfg.get('individualName', {})
        return cls(given_name=name.get('givenName').value(),
                   sur_name=name.get('surName').value(),
                   email=cfg.get('electronicMailAddress').value(),
                   organization=cfg.get('organizationName').value(),
                   user_id=cfg.get('userId').value())

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.given_name, self.sur_name) if p) or (self.organization or "")

    def asdict(self, value_serializer, filter):
        name = _drop_none(dict(givenName=self.given_name, surName=self.sur_name))
        return _drop_none(dict(individualName=name or None,
                               electronicMailAddress=self.email,
                               organizationName=self.organization,
                               userId=self.user_id))


@attrs.define
class TemporalCoverage:
    begin: Optional[DateLike] = attrs.field(default=None, converter=_opt_date)
    end: Optional[DateLike] = attrs.field(default=None, converter=_opt_date)

    @classmethod
    def from_dims(cls, dims: DimensionCatalog) -> 'TemporalCoverage':
        times = dims.time.values.astype('datetime64[D]')
        return cls(times.min().item(), times.max().item())


@attrs.define
class GeographicCoverage:
    description: Optional[str] = None
    west: Optional[float] = None
    east: Optional[float] = None
    north: Optional[float] = None
    south: Optional[float] = None

    def asdict(self, value_serializer, filter):
        return _drop_none(dict(
            geographicDescription=self.description,
            boundingCoordinates=_drop_none(dict(
                westBoundingCoordinate=self.west,
                eastBoundingCoordinate=self.east,
                northBoundingCoordinate=self.north,
                southBoundingCoordinate=self.south)) or None))

    @classmethod
    def from_cfg(cls, cfg: ContextCfg) -> 'GeographicCoverage':
        box = cfg.get('boundingCoordinates', {})
        return cls(description=cfg.get('geographicDescription').value(),
                   west=box.get('westBoundingCoordinate').value(),
                   east=box.get('eastBoundingCoordinate').value(),
                   north=box.get('northBoundingCoordinate').value(),
                   south=box.get('southBoundingCoordinate').value())


@attrs.define
class Taxon:
    genus: Optional[str] = None
    species: Optional[str] = None

    @property
    def scientific_name(self) -> str:
        return " ".join(p for p in (self.genus, self.species) if p)

    def asdict(self, value_serializer, filter):
        return _drop_none(dict(Genus=self.genus, Species=self.species))


@attrs.define
class Coverage:
    temporal: Optional[TemporalCoverage] = None
    geographic: Optional[GeographicCoverage] = None
    taxonomic: Tuple[Taxon, ...] = attrs.field(factory=tuple, converter=tuple)

    def asdict(self, value_serializer, filter):
        temporal = None
        if self.temporal is not None:
            temporal = _drop_none(dict(beginDate=self.temporal.begin, endDate=self.temporal.end))
        return _drop_none(dict(
            temporalCoverage=temporal,
            geographicCoverage=value_serializer(self, 'geographic', self.geographic),
            taxonomicCoverage=[value_serializer(self, 'taxonomic', t) for t in self.taxonomic] or None))

    @classmethod
    def from_cfg(cls, cfg: ContextCfg) -> Optional['Coverage']:
        if cfg.value() is None:
            return None
        temporal = cfg.get('temporalCoverage')
        if temporal.value() is not None:
            temporal = TemporalCoverage(begin=temporal.convert(_opt_date, 'beginDate'),
                                        end=temporal.convert(_opt_date, 'endDate'))
        else:
            temporal = None
        geographic = cfg.get('geographicCoverage')
        geographic = GeographicCoverage.from_cfg(geographic) if geographic.value() is not None else None
        taxa = [Taxon(genus=t.get('Genus').value(), species=t.get('Species').value())
                for t in cfg.get('taxonomicCoverage', []).items()]
        return cls(temporal, geographic, taxa)


@attrs.define
class Physical:
    object_name: Optional[str] = None
    size: Optional[int] = None
    authentication: Optional[str] = None
    field_delimiter: str = ","
    header_lines: int = 1

    def asdict(self, value_serializer, filter):
        return _drop_none(dict(
            objectName=self.object_name,
            size=self.size,
            authentication=self.authentication,
            fieldDelimiter=self.field_delimiter,
            numHeaderLines=self.header_lines))

    @classmethod
    def from_cfg(cls, cfg: ContextCfg) -> Optional['Physical']:
        if cfg.value() is None:
            return None
        return cls(object_name=cfg.get('objectName').value(),
                   size=cfg.get('size').value(),
                   authentication=cfg.get('authentication').value(),
                   field_delimiter=cfg.get('fieldDelimiter', ",").value(),
                   header_lines=cfg.get('numHeaderLines', 1).value())


def physical_for(table: Union[str, pl.DataFrame], object_name: str) -> Physical:
    """Physical description of a CSV body (or of a table as written): size in bytes and md5 checksum."""
    if isinstance(table, pl.DataFrame):
        table = tabular.csv_text(table)
    body = table.encode('utf-8')
    return Physical(object_name=object_name, size=len(body),
                    authentication=hashlib.md5(body).hexdigest())


@attrs.define
class DataTable:
    entity_name: Optional[str]
    description: Optional[str]
    physical: Optional[Physical]
    attributes: Optional[AttributeCatalog]

    def asdict(self, value_serializer, filter):
        return _drop_none(dict(
            entityName=self.entity_name,
            entityDescription=self.description,
            physical=value_serializer(self, 'physical', self.physical),
            attributeList=value_serializer(self, 'attributes', self.attributes)))

    @classmethod
    def from_cfg(cls, cfg: ContextCfg) -> 'DataTable':
        attr_cfg = cfg.get('attributeList')
        attributes = AttributeCatalog.from_cfg(attr_cfg) if attr_cfg.value() else None
        return cls(entity_name=cfg.get('entityName').value(),
                   description=cfg.get('entityDescription').value(),
                   physical=Physical.from_cfg(cfg.get('physical')),
                   attributes=attributes)


@attrs.define
class ModelDescription:
    model_id: Optional[str] = attrs.field(default=None, converter=lambda v: None if v is None else str(v))
    name: Optional[str] = None
    type: Optional[str] = None
    repository: Optional[str] = None

    def asdict(self, value_serializer, filter):
        return _drop_none(dict(forecast_model_id=self.model_id, name=self.name,
                               type=self.type, repository=self.repository))

    @classmethod
    def from_cfg(cls, cfg: ContextCfg) -> Optional['ModelDescription']:
        if cfg.value() is None:
            return None
        return cls(cfg.get('forecast_model_id').value(), cfg.get('name').value(),
                   cfg.get('type').value(), cfg.get('repository').value())


@attrs.define
class ForecastMetadata:
    """The forecast extension block of 'additionalMetadata'."""
    timestep: Optional[str]
    horizon: Optional[str]
    issue_time: Optional[DateLike] = attrs.field(converter=_opt_date)
    identifiers: ForecastIdentifiers
    model_description: Optional[ModelDescription]
    uncertainty: ForecastUncertainty
    standard_version: Optional[str] = METADATA_STANDARD_VERSION

    def asdict(self, value_serializer, filter):
        d = dict(
            timestep=self.timestep,
            forecast_horizon=self.horizon,
            forecast_issue_time=self.issue_time,
            forecast_iteration_id=self.identifiers.iteration_id,
            forecast_project_id=self.identifiers.project_id,
            forecast_model_id=self.identifiers.model_id,
            metadata_standard_version=self.standard_version,
            model_description=value_serializer(self, 'model_description', self.model_description),
        )
        d.update(value_serializer(self, 'uncertainty', self.uncertainty))
        return _drop_none(d)

    @classmethod
    def from_cfg(cls, cfg: ContextCfg) -> 'ForecastMetadata':
        identifiers = ForecastIdentifiers(
            project_id=cfg.get('forecast_project_id').value(),
            model_id=cfg.get('forecast_model_id').value(),
            iteration_id=cfg.get('forecast_iteration_id').value())
        return cls(
            timestep=cfg.get('timestep').value(),
            horizon=cfg.get('forecast_horizon').value(),
            issue_time=cfg.convert(_opt_date, 'forecast_issue_time'),
            identifiers=identifiers,
            model_description=ModelDescription.from_cfg(cfg.get('model_description')),
            uncertainty=ForecastUncertainty.from_cfg(cfg),
            standard_version=cfg.get('metadata_standard_version', METADATA_STANDARD_VERSION).value())


def _tuple(value) -> tuple:
    return tuple(value or ())


@attrs.define
class Dataset:
    title: Optional[str]
    creators: Tuple[Person, ...] = attrs.field(converter=_tuple)
    contact: Optional[Person] = None
    pub_date: Optional[DateLike] = attrs.field(default=None, converter=_opt_date)
    rights: Optional[str] = None
    abstract: Optional[str] = None
    keywords: Tuple[str, ...] = attrs.field(factory=tuple, converter=_tuple)
    methods: Optional[str] = None
    coverage: Optional[Coverage] = None
    data_tables: Tuple[DataTable, ...] = attrs.field(factory=tuple, converter=_tuple)

    def asdict(self, value_serializer, filter):
        return _drop_none(dict(
            title=self.title,
            creator=[value_serializer(self, 'creators', p) for p in self.creators] or None,
            contact=value_serializer(self, 'contact', self.contact),
            pubDate=self.pub_date,
            intellectualRights=self.rights,
            abstract=self.abstract,
            keywordSet=list(self.keywords) or None,
            methods=self.methods,
            coverage=value_serializer(self, 'coverage', self.coverage),
            dataTable=[value_serializer(self, 'data_tables', t) for t in self.data_tables] or None))

    @classmethod
    def from_cfg(cls, cfg: ContextCfg) -> 'Dataset':
        creators = cfg.get('creator', [])
        if isinstance(creators.value(), dict):
            creators = ContextCfg([creators.value()], creators.schema_ctx)
        tables = cfg.get('dataTable', [])
        if isinstance(tables.value(), dict):
            tables = ContextCfg([tables.value()], tables.schema_ctx)
        contact = cfg.get('contact')
        return cls(
            title=cfg.get('title').value(),
            creators=[Person.from_cfg(c) for c in creators.items()],
            contact=Person.from_cfg(contact) if contact.value() is not None else None,
            pub_date=cfg.convert(_opt_date, 'pubDate'),
            rights=cfg.get('intellectualRights').value(),
            abstract=cfg.get('abstract').value(),
            keywords=cfg.get('keywordSet', []).value(),
            methods=cfg.get('methods').value(),
            coverage=Coverage.from_cfg(cfg.get('coverage')),
            data_tables=[DataTable.from_cfg(t) for t in tables.items()])


@attrs.define
class MetadataRecord:
    dataset: Dataset
    forecast: ForecastMetadata
    package_id: Optional[str] = attrs.field(converter=lambda v: None if v is None else str(v))
    id_system: Optional[str] = DEFAULT_ID_SYSTEM

    @property
    def identifiers(self) -> ForecastIdentifiers:
        return self.forecast.identifiers

    def asdict(self, value_serializer, filter):
        return dict(
            packageId=self.package_id,
            idSystem=self.id_system,
            dataset=value_serializer(self, 'dataset', self.dataset),
            additionalMetadata={'forecast': value_serializer(self, 'forecast', self.forecast)})

    @classmethod
    def from_cfg(cls, cfg: ContextCfg) -> 'MetadataRecord':
        forecast = ForecastMetadata.from_cfg(cfg.get('additionalMetadata', {}).get('forecast', {}))
        return cls(
            dataset=Dataset.from_cfg(cfg.get('dataset', {})),
            forecast=forecast,
            package_id=cfg.get('packageId', forecast.identifiers.iteration_id).value(),
            id_system=cfg.get('idSystem', DEFAULT_ID_SYSTEM).value())


def build_record(dataset: Dataset, forecast: ForecastMetadata,
                 id_system: str = DEFAULT_ID_SYSTEM) -> MetadataRecord:
    """
    Compose the record; the package id is the forecast iteration id.
    """
    return MetadataRecord(dataset, forecast,
                          package_id=forecast.identifiers.iteration_id, id_system=id_system)


def data_table(entity_name: str, description: str, attributes: AttributeCatalog,
               table: Union[str, pl.DataFrame], object_name: str = None) -> DataTable:
    """Data table entry for a table, physical description computed from its CSV body."""
    object_name = object_name or entity_name
    return DataTable(entity_name, description, physical_for(table, object_name), attributes)


# ----------------------- (De)serialization helpers ----------------------- #

def convert_value(obj):
    """
    Recursively convert an object for YAML serialization.

    - Objects with `asdict(value_serializer, filter)` provide their own layout.
    - Other attrs instances are converted by attrs.asdict.
    - dict, list, tuple are processed recursively.
    - Dates are kept, YAML represents them natively.
    """
    if isinstance(obj, ContextCfg):
        raise obj.schema_ctx.error(f"Leaking ContextCfg: {obj.value()}")

    if hasattr(obj, "asdict"):
        return obj.asdict(
            value_serializer=lambda inst, field, value: convert_value(value),
            filter=lambda attribute, value: True)
    elif attrs.has(type(obj)):
        return attrs.asdict(obj, value_serializer=lambda inst, field, value: convert_value(value))
    elif isinstance(obj, dict):
        return {k: convert_value(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [convert_value(item) for item in obj]
    elif hasattr(obj, "dtype"):
        return obj.tolist()
    else:
        return obj


def deserialize(source: Union[IO, str, bytes, Path],
                source_description=None, log: ff_logger.Logger = None) -> MetadataRecord:
    """
    Deserialize the metadata record from a YAML file path, stream, or bytes.

    Parameters:
      source:
        - If Path, it is treated as a file path (and must exist).
        - If str, it is treated as YAML content.
        - If bytes, it is treated as YAML content (decoded as UTF-8).
        - Otherwise, it is assumed to be a file-like stream.

    source_description: Used as the 'file' of error addresses for non file sources.
    """
    file_name = source_description
    if isinstance(source, Path):
        file_name = str(source)
        with Path(source).open("r", encoding="utf-8") as file:
            content = file.read()
    elif isinstance(source, str):
        content = source
    elif isinstance(source, bytes):
        content = source.decode("utf-8")
    else:
        try:
            content = source.read()
        except Exception as e:
            raise TypeError("Provided source is not a supported type (IO, str, bytes, or Path)") from e

    raw_dict = yaml.safe_load(content) or {}
    if log is None:
        log = default_logger()
    root = ContextCfg(raw_dict, SchemaCtx(addr=[], file=file_name, logger=log))
    return MetadataRecord.from_cfg(root)

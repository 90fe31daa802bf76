"""
Attribute catalog: one descriptor per column of a tabular output.

The attribute definition carries a controlled variable type tag followed by
a free text definition:

    [dimension]{depth in reservoir}

Catalog checks:
- every variable type tag belongs to VariableType (UnknownVariableTypeError)
- catalog and table columns form a bijection (AttributeMismatchError)
- number type / format string agree with the column values (AttributeMismatchError)
"""
import enum
import re
from typing import *

import attrs
import numpy as np
import polars as pl

from . import units
from .schema_ctx import (ContextCfg, SchemaCtx, AttributeMismatchError,
                         UnknownVariableTypeError, SchemaValidationError)


class VariableType(str, enum.Enum):
    DIMENSION = 'dimension'
    VARIABLE = 'variable'
    DIAGNOSTIC = 'diagnostic'
    OBSERVATION = 'observation'
    OBS_ERROR = 'obs_error'
    FLAG = 'flag'
    INITIAL_CONDITION = 'initial_condition'
    DRIVER = 'driver'
    PARAMETER = 'parameter'
    RANDOM_EFFECT = 'random_effect'
    PROCESS_ERROR = 'process_error'


class NumberType(str, enum.Enum):
    NATURAL = 'natural'     # 1, 2, ...
    WHOLE = 'whole'         # 0, 1, ...
    INTEGER = 'integer'
    REAL = 'real'


_DEFINITION_RE = re.compile(r'^\s*\[(?P<type>[^\]]*)\]\s*\{(?P<text>.*)\}\s*$', re.DOTALL)


def parse_definition(definition: str, ctx: SchemaCtx = None) -> Tuple[VariableType, str]:
    """
    Split '[variable_type]{free text}' into the variable type and the text.
    """
    ctx = ctx or SchemaCtx(['attributeDefinition'])
    m = _DEFINITION_RE.match(definition or '')
    if m is None:
        raise UnknownVariableTypeError(
            f"Definition '{definition}' is not in the '[variable_type]{{definition}}' form.", ctx)
    return variable_type(m.group('type'), ctx), m.group('text').strip()


def variable_type(value, ctx: SchemaCtx = None) -> VariableType:
    try:
        return VariableType(value)
    except ValueError:
        allowed = ", ".join(v.value for v in VariableType)
        raise UnknownVariableTypeError(
            f"Unknown variable type '{value}', expected one of: {allowed}",
            ctx or SchemaCtx(['variable_type'])) from None


def _opt_number_type(value) -> Optional[NumberType]:
    return None if value is None else NumberType(value)


@attrs.define(frozen=True)
class AttributeDescriptor:
    name: str
    variable_type: VariableType
    definition: str
    unit: Optional[str] = None
    format_string: Optional[str] = None
    number_type: Optional[NumberType] = attrs.field(default=None, converter=_opt_number_type)
    missing_value_code: Optional[str] = None
    precision: Optional[float] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def __attrs_post_init__(self):
        ctx = SchemaCtx(['attributeList', self.name])
        object.__setattr__(self, 'variable_type', variable_type(self.variable_type, ctx.dive('variable_type')))
        if self.unit is not None:
            units.parse_unit(self.unit, ctx.dive('unit'))

    @classmethod
    def from_definition(cls, name: str, definition: str, **kwargs) -> 'AttributeDescriptor':
        ctx = SchemaCtx(['attributeList', name, 'attributeDefinition'])
        var_type, text = parse_definition(definition, ctx)
        return cls(name, var_type, text, **kwargs)

    @property
    def attribute_definition(self) -> str:
        return f"[{self.variable_type.value}]{{{self.definition}}}"

    @property
    def measurement_scale(self) -> str:
        if self.format_string is not None:
            return 'dateTime'
        if self.number_type is None:
            return 'nominal'
        return 'ratio' if self.unit is not None else 'interval'

    def asdict(self, value_serializer, filter):
        d = dict(
            attributeName=self.name,
            attributeDefinition=self.attribute_definition,
            unit=self.unit,
            formatString=self.format_string,
            numberType=None if self.number_type is None else self.number_type.value,
            missingValueCode=self.missing_value_code,
            precision=self.precision,
            minimum=self.minimum,
            maximum=self.maximum,
        )
        return {k: v for k, v in d.items() if v is not None}


_ROW_KEYS = {
    'unit': 'unit',
    'formatString': 'format_string',
    'numberType': 'number_type',
    'missingValueCode': 'missing_value_code',
    'precision': 'precision',
    'minimum': 'minimum',
    'maximum': 'maximum',
}


@attrs.define(frozen=True)
class AttributeCatalog:
    attributes: Tuple[AttributeDescriptor, ...] = attrs.field(converter=tuple)

    def __attrs_post_init__(self):
        seen = set()
        for attr in self.attributes:
            if attr.name in seen:
                raise AttributeMismatchError(f"Duplicate attribute '{attr.name}'.",
                                             SchemaCtx(['attributeList', attr.name]))
            seen.add(attr.name)

    @classmethod
    def from_rows(cls, rows: Iterable[Dict[str, Any]]) -> 'AttributeCatalog':
        """
        Rows with keys: attributeName, attributeDefinition, unit, formatString, numberType, ...
        """
        attributes = []
        for row in rows:
            kwargs = {attr_key: row[key] for key, attr_key in _ROW_KEYS.items() if row.get(key) is not None}
            attributes.append(
                AttributeDescriptor.from_definition(row['attributeName'], row['attributeDefinition'], **kwargs))
        return cls(attributes)

    @classmethod
    def from_cfg(cls, cfg: ContextCfg) -> 'AttributeCatalog':
        for item in cfg.items():
            item.required('attributeName')
            item.required('attributeDefinition')
            if 'numberType' in item:
                item.convert(NumberType, 'numberType')
        return cls.from_rows(cfg.value())

    @property
    def names(self) -> List[str]:
        return [a.name for a in self.attributes]

    def __getitem__(self, name: str) -> AttributeDescriptor:
        for a in self.attributes:
            if a.name == name:
                return a
        raise KeyError(name)

    def __iter__(self):
        return iter(self.attributes)

    def __len__(self):
        return len(self.attributes)

    def check_columns(self, df: pl.DataFrame, table_name: str = 'dataTable'):
        """
        Every column has exactly one descriptor and every descriptor names a column.
        """
        ctx = SchemaCtx([table_name, 'attributeList'])
        columns = list(df.columns)
        undescribed = [c for c in columns if c not in self.names]
        unused = [n for n in self.names if n not in columns]
        failures = [AttributeMismatchError(f"Column '{c}' has no attribute descriptor.", ctx.dive(c))
                    for c in undescribed]
        failures += [AttributeMismatchError(f"Attribute '{n}' has no matching column.", ctx.dive(n))
                     for n in unused]
        if failures:
            raise AttributeMismatchError(
                f"Attribute list of '{table_name}' does not match the table columns.", ctx, failures)

    def check_domains(self, df: pl.DataFrame, table_name: str = 'dataTable'):
        """
        Number type and format string of each descriptor agree with the column values.
        """
        ctx = SchemaCtx([table_name, 'attributeList'])
        failures = []
        for attr in self.attributes:
            if attr.name not in df.columns:
                continue
            problem = _domain_problem(attr, df[attr.name])
            if problem:
                failures.append(AttributeMismatchError(problem, ctx.dive(attr.name)))
        if failures:
            raise AttributeMismatchError(
                f"Attribute types of '{table_name}' do not match the column values.", ctx, failures)

    def check_table(self, df: pl.DataFrame, table_name: str = 'dataTable'):
        self.check_columns(df, table_name)
        self.check_domains(df, table_name)

    def with_ranges(self, df: pl.DataFrame) -> 'AttributeCatalog':
        """Fill missing minimum/maximum of numeric attributes from the table."""
        updated = []
        for attr in self.attributes:
            col = df[attr.name] if attr.name in df.columns else None
            if attr.number_type is not None and col is not None and col.dtype.is_numeric():
                values = col.drop_nulls().drop_nans() if col.dtype.is_float() else col.drop_nulls()
                if len(values):
                    attr = attrs.evolve(
                        attr,
                        minimum=attr.minimum if attr.minimum is not None else float(values.min()),
                        maximum=attr.maximum if attr.maximum is not None else float(values.max()))
            updated.append(attr)
        return AttributeCatalog(updated)

    def problems(self, ctx: SchemaCtx) -> List[SchemaValidationError]:
        """
        Rendered '[variable_type]{definition}' strings, as written to the documents,
        must parse back and carry a non-empty definition text.
        The tag itself is checked at construction of the descriptor.
        """
        failures = []
        for a in self.attributes:
            a_ctx = ctx.dive(a.name, 'attributeDefinition')
            try:
                _, text = parse_definition(a.attribute_definition, a_ctx)
            except UnknownVariableTypeError as e:
                failures.append(e)
                continue
            if not text:
                failures.append(SchemaValidationError(
                    f"Attribute '{a.name}' has an empty definition: '{a.attribute_definition}'.", a_ctx))
        return failures

    def asdict(self, value_serializer, filter):
        return [value_serializer(self, 'attributes', a) for a in self.attributes]


def _domain_problem(attr: AttributeDescriptor, col: pl.Series) -> Optional[str]:
    dtype = col.dtype
    if dtype.is_temporal():
        if attr.format_string is None or attr.number_type is not None:
            return f"Date column '{attr.name}' requires a formatString and no numberType."
        return None
    if attr.format_string is not None:
        return f"Column '{attr.name}' of type {dtype} declares date formatString '{attr.format_string}'."
    if dtype.is_float():
        if attr.number_type != NumberType.REAL:
            return f"Real valued column '{attr.name}' requires numberType 'real', got {_nt(attr)}."
        return None
    if dtype.is_integer():
        if attr.number_type is None:
            return f"Integer column '{attr.name}' requires a numberType."
        values = col.drop_nulls()
        lower = {NumberType.NATURAL: 1, NumberType.WHOLE: 0}.get(attr.number_type)
        if lower is not None and len(values) and values.min() < lower:
            return f"Column '{attr.name}' has values < {lower}, not allowed for numberType '{attr.number_type.value}'."
        return None
    if attr.number_type is not None:
        return f"Non numeric column '{attr.name}' ({dtype}) declares numberType {_nt(attr)}."
    return None


def _nt(attr: AttributeDescriptor) -> str:
    return 'none' if attr.number_type is None else f"'{attr.number_type.value}'"


# ----------------------- Default catalogs ----------------------- #

def _dimension_rows() -> List[Dict[str, Any]]:
    return [
        dict(attributeName='time', attributeDefinition='[dimension]{time}', formatString='YYYY-MM-DD'),
        dict(attributeName='depth', attributeDefinition='[dimension]{depth in reservoir}',
             unit='meter', numberType='real'),
    ]


def _value_rows(species: Sequence[str]) -> List[Dict[str, Any]]:
    rows = [
        dict(attributeName='obs_flag', attributeDefinition='[dimension]{observation error}',
             unit='dimensionless', numberType='natural'),
    ]
    rows += [
        dict(attributeName=name, attributeDefinition=f'[variable]{{Pop. density of {name}}}',
             unit='dimensionless', numberType='real', missingValueCode='NA')
        for name in species
    ]
    rows += [
        dict(attributeName='forecast', attributeDefinition='[flag]{whether time step is a forecast}',
             unit='dimensionless', numberType='whole'),
        dict(attributeName='data_assimilation',
             attributeDefinition='[flag]{whether time step assimilated data}',
             unit='dimensionless', numberType='whole'),
    ]
    return rows


def ensemble_attributes(species: Sequence[str] = ('species_1', 'species_2')) -> AttributeCatalog:
    """Catalog of the full ensemble table."""
    ensemble = dict(attributeName='ensemble', attributeDefinition='[dimension]{index of ensemble member}',
                    unit='dimensionless', numberType='natural')
    return AttributeCatalog.from_rows(_dimension_rows() + [ensemble] + _value_rows(species))


def summary_attributes(species: Sequence[str] = ('species_1', 'species_2')) -> AttributeCatalog:
    """Catalog of the summary statistics table."""
    statistic = dict(attributeName='statistic', attributeDefinition='[dimension]{summary statistic}')
    return AttributeCatalog.from_rows(_dimension_rows() + [statistic] + _value_rows(species))


ENSEMBLE_ATTRIBUTES = ensemble_attributes()
SUMMARY_ATTRIBUTES = summary_attributes()

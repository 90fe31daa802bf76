import datetime
import re
from typing import Iterable

import attrs
import numpy as np
import dateutil.parser

from .schema_ctx import MalformedUnitError, SchemaCtx

import pint as _pint
ureg = _pint.UnitRegistry()

ureg.define('bool = []')
ureg.define('boolean = bool')          # alias
ureg.define('individual = []')         # population counts, EML 'number'

_pint.set_application_registry(ureg)



class Unit(ureg.Unit):
    def asdict(self, value_serializer, filter):
        return str(self)

    @property
    def text(self) -> str:
        return str(self)

    def is_time(self) -> bool:
        return self.dimensionality == ureg.Unit('second').dimensionality


class Quantity(ureg.Quantity):

    @property
    def unit(self):
        # pint.Quantity.units has unlogical name.
        return self.units


_SINCE_RE = re.compile(r'^\s*(?P<unit>\S+)\s+since\s+(?P<ref>.+?)\s*$')


@attrs.define(frozen=True)
class ReferenceTimeUnit:
    """
    Time axis unit in the 'days since 2001-03-04' form.
    Values are stored as offsets from the reference date.
    """
    step: Unit
    reference: np.datetime64
    text: str

    def asdict(self, value_serializer, filter):
        return self.text

    def __str__(self):
        return self.text

    def encode(self, values: Iterable) -> np.ndarray:
        """Datetimes -> float offsets in `step` units."""
        dt = np.asarray(values, dtype='datetime64[s]')
        seconds = (dt - self.reference.astype('datetime64[s]')).astype(np.float64)
        return Quantity(seconds, 's').to(self.step).magnitude

    def decode(self, offsets: Iterable) -> np.ndarray:
        """Float offsets in `step` units -> datetime64[s]."""
        seconds = Quantity(np.asarray(offsets, dtype=np.float64), self.step).to('s').magnitude
        delta = np.round(seconds).astype('timedelta64[s]')
        return self.reference.astype('datetime64[s]') + delta


UnitType = Unit | ReferenceTimeUnit


def parse_unit(text: str, ctx: SchemaCtx = None) -> UnitType:
    """
    Parse a unit expression. Accepts any pint expression ('meters', 'dimensionless', '1/m^3')
    or a reference time expression '<time unit> since <date>'.
    Raise MalformedUnitError for anything else.
    """
    if ctx is None:
        ctx = SchemaCtx(['unit'])
    if isinstance(text, (Unit, ReferenceTimeUnit)):
        return text
    if not isinstance(text, str):
        raise MalformedUnitError(f"Unit must be a string, got: {text!r}", ctx)

    m = _SINCE_RE.match(text)
    if m:
        step = _pint_unit(m.group('unit'), ctx)
        if not step.is_time():
            raise MalformedUnitError(f"Reference unit '{text}' does not use a time step.", ctx)
        try:
            ref = dateutil.parser.parse(m.group('ref'), yearfirst=True)
        except (dateutil.parser.ParserError, OverflowError) as e:
            raise MalformedUnitError(f"Invalid reference date in unit '{text}': {e}", ctx) from e
        if ref.tzinfo is not None:
            ref = ref.astimezone(datetime.timezone.utc).replace(tzinfo=None)
        return ReferenceTimeUnit(step, np.datetime64(ref, 's'), text)
    return _pint_unit(text, ctx)


def _pint_unit(text: str, ctx: SchemaCtx) -> Unit:
    try:
        return Unit(text)
    except Exception as e:
        raise MalformedUnitError(f"Invalid unit string: '{text}'. Pint error: {e}", ctx) from e


def is_valid_unit(text: str) -> bool:
    try:
        parse_unit(text)
    except MalformedUnitError:
        return False
    return True

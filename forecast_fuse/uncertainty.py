"""
Forecast uncertainty block.

Six uncertainty classes, each with an ordinal status:

    absent < present < data_driven < propagates < assimilates

A higher status implies the lower ones, so rules are stated as
'status >= X' and a record never has to repeat an implied assertion.
"""
import enum
from typing import *

import attrs

from .schema_ctx import ContextCfg, SchemaCtx, SchemaValidationError, SchemaWarning


class UncertaintyKind(str, enum.Enum):
    INITIAL_CONDITIONS = 'initial_conditions'
    DRIVERS = 'drivers'
    PARAMETERS = 'parameters'
    RANDOM_EFFECTS = 'random_effects'
    PROCESS_ERROR = 'process_error'
    OBS_ERROR = 'obs_error'


class UncertaintyStatus(enum.IntEnum):
    ABSENT = 0
    PRESENT = 1
    DATA_DRIVEN = 2
    PROPAGATES = 3
    ASSIMILATES = 4

    @classmethod
    def parse(cls, value) -> 'UncertaintyStatus':
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            allowed = ", ".join(s.label for s in cls)
            raise ValueError(f"Unknown status '{value}', expected one of: {allowed}") from None

    @property
    def label(self) -> str:
        return self.name.lower()


class PropagationType(str, enum.Enum):
    ENSEMBLE = 'ensemble'
    ANALYTIC = 'analytic'


def _opt(converter):
    return lambda value: None if value is None else converter(value)


@attrs.define(frozen=True)
class Propagation:
    type: Optional[PropagationType] = attrs.field(default=None, converter=_opt(PropagationType))
    size: Optional[int] = None

    def asdict(self, value_serializer, filter):
        d = dict(type=None if self.type is None else self.type.value, size=self.size)
        return {k: v for k, v in d.items() if v is not None}


def _propagation(value) -> Optional[Propagation]:
    if value is None or isinstance(value, Propagation):
        return value
    return Propagation(**value)


@attrs.define(frozen=True)
class UncertaintyClass:
    kind: UncertaintyKind = attrs.field(converter=UncertaintyKind)
    status: UncertaintyStatus = attrs.field(converter=UncertaintyStatus.parse)
    complexity: Optional[int] = None
    covariance: Optional[bool] = None
    propagation: Optional[Propagation] = attrs.field(default=None, converter=_propagation)

    def implies(self, status: UncertaintyStatus) -> bool:
        return self.status >= status

    @classmethod
    def from_cfg(cls, kind: UncertaintyKind, cfg: ContextCfg) -> 'UncertaintyClass':
        status = cfg.convert(UncertaintyStatus.parse, 'status')
        if status is None:
            cfg.get('status').schema_ctx.error("Obligatory key 'status' is missing.")
        prop_cfg = cfg.get('propagation')
        propagation = None
        if prop_cfg.value() is not None:
            propagation = Propagation(type=prop_cfg.convert(PropagationType, 'type'),
                                      size=prop_cfg.get('size').value())
        return cls(kind, status,
                   complexity=cfg.get('complexity').value(),
                   covariance=cfg.get('covariance').value(),
                   propagation=propagation)

    def asdict(self, value_serializer, filter):
        d = dict(status=self.status.label, complexity=self.complexity, covariance=self.covariance,
                 propagation=value_serializer(self, 'propagation', self.propagation))
        return {k: v for k, v in d.items() if v is not None}


# ----------------------- Rules ----------------------- #

Check = Callable[[UncertaintyClass], bool]


def at_least(status: UncertaintyStatus) -> Check:
    return lambda c: c.status >= status


def below(status: UncertaintyStatus) -> Check:
    return lambda c: c.status < status


@attrs.define(frozen=True)
class Rule:
    """
    Requirement `ok` on classes where `when` holds (and of given `kinds`, if set).
    """
    when: Check
    field: str
    ok: Check
    message: str
    kinds: FrozenSet[UncertaintyKind] = frozenset()

    def applies(self, c: UncertaintyClass) -> bool:
        return (not self.kinds or c.kind in self.kinds) and self.when(c)


def _is_int(value, minimum) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= minimum


ABSENT = UncertaintyStatus.ABSENT
PROPAGATES = UncertaintyStatus.PROPAGATES

RULES = [
    Rule(below(UncertaintyStatus.PRESENT), 'complexity', lambda c: c.complexity is None,
         "status 'absent' contradicts a complexity value"),
    Rule(below(UncertaintyStatus.PRESENT), 'covariance', lambda c: c.covariance is None,
         "status 'absent' contradicts a covariance value"),
    Rule(below(PROPAGATES), 'propagation', lambda c: c.propagation is None,
         "propagation declared but status is below 'propagates'"),
    Rule(at_least(UncertaintyStatus.PRESENT), 'complexity',
         lambda c: c.complexity is None or _is_int(c.complexity, 0),
         "complexity must be a non-negative integer"),
    Rule(at_least(UncertaintyStatus.PRESENT), 'covariance',
         lambda c: c.covariance is None or isinstance(c.covariance, bool),
         "covariance must be a boolean"),
    Rule(at_least(PROPAGATES), 'propagation/type',
         lambda c: c.propagation is not None and c.propagation.type is not None,
         "propagation.type is required for propagated process error",
         kinds=frozenset({UncertaintyKind.PROCESS_ERROR})),
    Rule(at_least(PROPAGATES), 'propagation/size',
         lambda c: (c.propagation is None or c.propagation.type != PropagationType.ENSEMBLE
                    or c.propagation.size is not None),
         "propagation.size is required for ensemble propagation"),
    Rule(at_least(PROPAGATES), 'propagation/size',
         lambda c: c.propagation is None or c.propagation.size is None or _is_int(c.propagation.size, 1),
         "propagation.size must be a positive integer"),
]

RECOMMENDATIONS = [
    Rule(at_least(UncertaintyStatus.PRESENT), 'complexity', lambda c: c.complexity is not None,
         "complexity is recommended for a present uncertainty"),
]


@attrs.define(frozen=True)
class ForecastUncertainty:
    classes: Tuple[UncertaintyClass, ...] = attrs.field(converter=tuple)

    @classmethod
    def from_cfg(cls, cfg: ContextCfg) -> 'ForecastUncertainty':
        """Read classes from the keys of the forecast block, missing kinds are left out."""
        return cls([UncertaintyClass.from_cfg(kind, cfg[kind.value])
                    for kind in UncertaintyKind if kind.value in cfg])

    @classmethod
    def all_absent(cls) -> 'ForecastUncertainty':
        return cls([UncertaintyClass(kind, ABSENT) for kind in UncertaintyKind])

    def __getitem__(self, kind: UncertaintyKind | str) -> UncertaintyClass:
        kind = UncertaintyKind(kind)
        for c in self.classes:
            if c.kind == kind:
                return c
        raise KeyError(kind.value)

    def replace(self, new: UncertaintyClass) -> 'ForecastUncertainty':
        return ForecastUncertainty([new if c.kind == new.kind else c for c in self.classes])

    def problems(self, ctx: SchemaCtx) -> List[SchemaValidationError]:
        failures = []
        counts = {kind: 0 for kind in UncertaintyKind}
        for c in self.classes:
            counts[c.kind] += 1
        for kind, n in counts.items():
            if n == 0:
                failures.append(SchemaValidationError(
                    f"Uncertainty class '{kind.value}' is missing.", ctx.dive(kind.value)))
            elif n > 1:
                failures.append(SchemaValidationError(
                    f"Uncertainty class '{kind.value}' is given {n} times.", ctx.dive(kind.value)))

        for c in self.classes:
            for rule in RULES:
                if rule.applies(c) and not rule.ok(c):
                    path = ctx.dive(c.kind.value, *rule.field.split('/'))
                    failures.append(SchemaValidationError(
                        f"{c.kind.value}: {rule.message} (status '{c.status.label}').", path))
        return failures

    def recommendations(self, ctx: SchemaCtx) -> List[SchemaWarning]:
        return [SchemaWarning(f"{c.kind.value}: {rule.message}.", ctx.dive(c.kind.value, rule.field))
                for c in self.classes for rule in RECOMMENDATIONS
                if rule.applies(c) and not rule.ok(c)]

    def asdict(self, value_serializer, filter):
        return {c.kind.value: value_serializer(self, c.kind.value, c) for c in self.classes}

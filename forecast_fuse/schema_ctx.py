"""
Schema context classes provide association of metadata records and
catalog entries with their location in the metadata document in order
to provide consistent and informed error messages.
"""

from typing import *
import attrs
from . import logger as ff_logger

class RaisingLogger(ff_logger.Logger):
    def error(self, exc, *args, **kwargs):
        super().error(exc, *args, **kwargs)
        if not isinstance(exc, BaseException):
            exc = RuntimeError(str(exc))
        raise exc # fallback if a plain message was passed


def default_logger():
    return RaisingLogger("default schema logger")


class SchemaErrBase:
    """
    Mixin that holds message and its origin context for both
    the Exception and the Warning classes.
    """
    def __init__(self, message: str, ctx: 'SchemaCtx' = None):
        self.message = message
        self.address = ctx if ctx is not None else SchemaCtx([])
        super().__init__(message)

    @property
    def path(self) -> str:
        return self.address.path

    def __str__(self) -> str:
        return f"{self.message}  (at {self.address})"


class SchemaError(SchemaErrBase, Exception):
    """Raise when the metadata problem should be fatal."""
    pass


class SchemaWarning(SchemaErrBase, UserWarning):
    """Emit when the problem should be non-fatal."""
    pass


class SchemaValidationError(SchemaError):
    """
    Base or extension schema violation.
    The validator raises it with all collected `failures`.
    """
    def __init__(self, message: str, ctx: 'SchemaCtx' = None,
                 failures: Sequence['SchemaValidationError'] = ()):
        super().__init__(message, ctx)
        self.failures = list(failures)

    def __str__(self) -> str:
        if not self.failures:
            return super().__str__()
        lines = [self.message] + [f"  - {f}" for f in self.failures]
        return "\n".join(lines)


class MalformedUnitError(SchemaValidationError):
    """Unit string not parseable by the unit grammar."""
    pass


class UnmatchedTimeError(SchemaValidationError):
    """Time value of the tensor without a flag entry."""
    pass


class UnknownVariableTypeError(SchemaValidationError):
    """Variable type tag outside of the controlled vocabulary."""
    pass


class AttributeMismatchError(SchemaValidationError):
    """Attribute catalog inconsistent with the table it describes."""
    pass


SchemaKey = Union[str, int]
SchemaPath = SchemaKey | List[SchemaKey]
@attrs.define(frozen=True)
class SchemaCtx:
    """
    Represents a single value in the metadata document.
    Holds the source file name (or empty string for an anonymous stream)
    and a list of path components locating the value within the YAML tree.

    Path components are stored as provided (str or int) and converted to
    strings only when rendering.
    """
    addr: SchemaPath
    file: str = attrs.field(default=None, eq=False)
    logger: ff_logger.Logger = attrs.field(factory=default_logger, eq=False, repr=False)

    @property
    def path(self) -> str:
        """Return the path as a string."""
        return self._join(self.addr)

    @staticmethod
    def _join(addr):
        return '/'.join(map(str, addr))

    def __str__(self) -> str:
        file_repr = self.file if self.file else "<METADATA STREAM>"
        return f"{file_repr}:{self.path}"

    def dive(self, *path) -> "SchemaCtx":
        """Return a new SchemaCtx with extra path components."""
        addr = list(self.addr) + list(path)
        return SchemaCtx(addr, self.file, self.logger)

    def parent(self) -> "SchemaCtx":
        """Return a new SchemaCtx for the parent path."""
        if isinstance(self.addr, list) and len(self.addr) > 0:
            addr = self.addr[:-1]
        else:
            addr = []
        return SchemaCtx(addr, self.file, self.logger)

    def error(self, message: str, cls=SchemaValidationError, **kwargs) -> SchemaError:
        err = cls(message, self)
        self.logger.error(err, **kwargs)
        return err

    def warning(self, message: str, **kwargs) -> SchemaWarning:
        warn = SchemaWarning(message, self)
        self.logger.warning(warn, **kwargs)
        return warn


@attrs.define
class ContextCfg:
    cfg: Dict[str, Any] | List[Any]
    schema_ctx: SchemaCtx

    def __getitem__(self, key: str| int) -> Any:
        return ContextCfg(self.cfg[key], self.schema_ctx.dive(key))

    def __contains__(self, item):
        return self.cfg is not None and item in self.cfg

    def value(self) -> Any:
        return self.cfg

    def keys(self):
        return self.cfg.keys() if self.cfg else []

    def items(self):
        """Sequence items wrapped with their own context."""
        return [self[i] for i in range(len(self.cfg or []))]

    def get(self, key: str| int, default=None) -> Any:
        value = default if self.cfg is None else self.cfg.get(key, default)
        return ContextCfg(value, self.schema_ctx.dive(key))

    def required(self, key: str) -> Any:
        """Value of an obligatory key, reports the key path if missing."""
        item = self.get(key)
        if item.value() is None:
            item.schema_ctx.error(f"Obligatory key '{key}' is missing.")
        return item.value()

    def convert(self, converter: Callable, key: str, default=None):
        """
        Apply `converter` (usually an enum class) to the value of `key`,
        ValueError/TypeError are reported with the key path.
        """
        item = self.get(key, default)
        if item.value() is None:
            return None
        try:
            return converter(item.value())
        except (ValueError, TypeError) as e:
            item.schema_ctx.error(f"Invalid value {item.value()!r}: {e}")

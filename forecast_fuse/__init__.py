# Use of relative imports is recommended in __init__.py
from . import units
from .dimensions import Dimension, DimensionCatalog, ObsFlag
from .forecast_data import ForecastTensor, FlagSequences, ForecastIdentifiers, FILL_VALUE
from .array_storage import write_forecast_container, read_forecast_container
from .tabular import ensemble_table, summary_table
from .attributes import AttributeCatalog, AttributeDescriptor, VariableType
from .uncertainty import ForecastUncertainty, UncertaintyClass, UncertaintyStatus
from . import metadata
from .validation import validate, ValidatedRecord
from .exchange import to_yaml, to_eml_xml, to_jsonld
from .package import package_forecast, FFOptionError
from .schema_ctx import (SchemaError, SchemaValidationError, MalformedUnitError, UnmatchedTimeError,
                         UnknownVariableTypeError, AttributeMismatchError)

__version__ = "0.1.0"

# What is allowed to be imported by
# from forecast_fuse import *
__all__ = ['DimensionCatalog', 'ForecastTensor', 'FlagSequences', 'ForecastIdentifiers',
           'write_forecast_container', 'read_forecast_container', 'ensemble_table', 'summary_table',
           'metadata', 'validate', 'package_forecast']

from dyn.dyn_datatypes import (
    DynError, NotFound, ConversionError, UnsupportedOperation, DivisionByZero,
    OutOfRange, ImmutableViolation, NoMatchingMethod, InvocationError,
    ValidationError, MalformedInput, Outcome,
)
from dyn.dyn_value import (
    Dyn, of, immutable, optional, list_of, set_of, array_of, map_of,
    local_date, local_datetime, from_json, from_text,
)
from dyn.dyn_dispatch import (
    dyn_operation, OperationRegistry, ResolutionCache, default_registry, resolution_cache,
)
from dyn.dyn_printer import Printer

"""
Value Converter - conversion between typed entity values and SQL representations.

Two directions:
- to_sql_literal renders a Python value as an inline SQL literal (legacy path,
  used by the inline predicate translation and debug output)
- from_wire_value coerces a raw database value into the semantic type of a field

Both are pure functions. Every coercion failure surfaces as MappingError; no
field is ever skipped silently.
"""

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from niorm.domain.exceptions import MappingError
from niorm.domain.schema import FieldKind, FieldType, TableMetadata, create_instance

DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%Y-%m-%d",
)

_TRUE_STRINGS = frozenset({"true", "1"})
_FALSE_STRINGS = frozenset({"false", "0"})


def to_sql_literal(value: Any) -> str:
    """
    Render a value as an inline SQL literal.

    Strings are NOT escaped: this is the legacy literal path and must never
    receive untrusted input. Use the parameter builder instead.

    Args:
        value: Value to render

    Returns:
        SQL literal text, or an empty string for unsupported types
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, Enum):
        return to_sql_literal(value.value)
    if isinstance(value, str):
        return f"N'{value}'"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return f"'{value:%Y-%m-%d %H:%M:%S}.{value.microsecond // 10000:02d}'"
    if isinstance(value, date):
        return f"'{value:%Y-%m-%d}'"
    if isinstance(value, UUID):
        return f"N'{value}'"
    return ""


def to_parameter_value(value: Any) -> Any:
    """Value bound for a parameter: enums bind their underlying value."""
    if isinstance(value, Enum):
        return value.value
    return value


def from_wire_value(raw: Any, field_type: FieldType, field_name: str | None = None) -> Any:
    """
    Coerce a raw database value into a field's semantic type.

    Values that already have the target type pass through. Anything else is
    parsed from its string representation; inline literal quoting (N'..' and
    '..') and the bare ``null`` literal are understood so that literals
    produced by to_sql_literal read back to the original value.

    Args:
        raw: Value as delivered by the driver (or an SQL literal)
        field_type: Target field type
        field_name: Field name used in error messages

    Returns:
        The typed value

    Raises:
        MappingError: If the value cannot be coerced
    """
    if raw is None:
        if field_type.nullable:
            return None
        raise MappingError(field_name, raw, "field is not nullable")

    passthrough = _passthrough(raw, field_type)
    if passthrough is not None:
        return passthrough

    text = str(raw)
    if field_type.nullable and (text == "" or text.lower() == "null"):
        return None
    text = _unquote(text)

    try:
        return _PARSERS[field_type.kind](text, field_type)
    except (ValueError, TypeError, KeyError, InvalidOperation) as e:
        raise MappingError(field_name, raw, str(e) or type(e).__name__) from e


def map_row(metadata: TableMetadata, row: Mapping[str, Any]) -> Any:
    """
    Build an entity instance from a result row.

    Columns without a matching field are ignored. Fields missing from the row,
    and non-nullable fields whose column is NULL, keep their dataclass
    default, or None when they have none.

    Raises:
        MappingError: If any column value cannot be coerced
    """
    by_lower = {name.lower(): name for name in metadata.fields}
    values: dict[str, Any] = {}
    for column, raw in row.items():
        name = column if metadata.has_field(column) else by_lower.get(str(column).lower())
        if name is None:
            continue
        field_type = metadata.field_type(name)
        if raw is None and not field_type.nullable:
            continue
        values[name] = from_wire_value(raw, field_type, name)

    return create_instance(metadata.entity_type, values)


def _passthrough(raw: Any, field_type: FieldType) -> Any:
    kind = field_type.kind
    if kind is FieldKind.BOOLEAN:
        return raw if isinstance(raw, bool) else None
    if kind is FieldKind.INTEGER:
        return raw if isinstance(raw, int) and not isinstance(raw, bool) else None
    if kind is FieldKind.FLOAT:
        return float(raw) if isinstance(raw, (int, float)) and not isinstance(raw, bool) else None
    if kind is FieldKind.DECIMAL:
        return raw if isinstance(raw, Decimal) else None
    if kind is FieldKind.DATETIME:
        return raw if isinstance(raw, datetime) else None
    if kind is FieldKind.DATE:
        if isinstance(raw, datetime):
            return raw.date()
        return raw if isinstance(raw, date) else None
    if kind is FieldKind.GUID:
        return raw if isinstance(raw, UUID) else None
    if kind is FieldKind.ENUM:
        return raw if isinstance(raw, field_type.python_type) else None
    if kind is FieldKind.TEXT and isinstance(raw, UUID):
        return str(raw)
    return None


def _unquote(text: str) -> str:
    if len(text) >= 3 and text.startswith("N'") and text.endswith("'"):
        return text[2:-1]
    if len(text) >= 2 and text.startswith("'") and text.endswith("'"):
        return text[1:-1]
    return text


def _parse_integer(text: str, field_type: FieldType) -> int:
    try:
        return int(text)
    except ValueError:
        number = Decimal(text)
        if number != number.to_integral_value():
            raise ValueError(f"{text!r} is not an integer") from None
        return int(number)


def _parse_boolean(text: str, field_type: FieldType) -> bool:
    lowered = text.strip().lower()
    if lowered in _TRUE_STRINGS:
        return True
    if lowered in _FALSE_STRINGS:
        return False
    raise ValueError(f"{text!r} is not a boolean")


def _parse_datetime(text: str, field_type: FieldType) -> datetime:
    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return datetime.fromisoformat(text)


def _parse_date(text: str, field_type: FieldType) -> date:
    return _parse_datetime(text, field_type).date()


def _parse_enum(text: str, field_type: FieldType) -> Enum:
    enum_type = field_type.python_type
    try:
        return enum_type(int(text))
    except ValueError:
        pass
    try:
        return enum_type(text)
    except ValueError:
        return enum_type[text]


_PARSERS = {
    FieldKind.INTEGER: _parse_integer,
    FieldKind.FLOAT: lambda text, _: float(text),
    FieldKind.DECIMAL: lambda text, _: Decimal(text),
    FieldKind.TEXT: lambda text, _: text,
    FieldKind.BOOLEAN: _parse_boolean,
    FieldKind.DATETIME: _parse_datetime,
    FieldKind.DATE: _parse_date,
    FieldKind.ENUM: _parse_enum,
    FieldKind.GUID: lambda text, _: UUID(text),
}

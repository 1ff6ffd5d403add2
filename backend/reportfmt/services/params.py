"""Report format parameter types, bounds and value validation."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Sequence

# purpose: validate parameter definitions and values identically for create, modify and the feed
# status: production
# depends_on: backend.reportfmt.models.ReportFormatParam

LLONG_MIN = -(2**63)
LLONG_MAX = 2**63 - 1

_INTEGER_PATTERN = re.compile(r"\s*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")
_REPORT_FORMAT_LIST_PATTERN = re.compile(r"^(?:[\w-]+)?(?:,[\w-]+)*$")


class ParamType(str, enum.Enum):
    BOOLEAN = "boolean"
    INTEGER = "integer"
    SELECTION = "selection"
    STRING = "string"
    TEXT = "text"
    REPORT_FORMAT_LIST = "report_format_list"

    @classmethod
    def from_name(cls, name: str | None) -> "ParamType | None":
        try:
            return cls(name)
        except ValueError:
            return None


class BoundError(ValueError):
    """Raised for a bound that does not parse or that equals the unset sentinel."""


@dataclass
class ParamSpec:
    """A parameter definition as supplied by an importer."""

    name: str
    type: str | None
    value: str | None = None
    fallback: str | None = None
    type_min: str | None = None
    type_max: str | None = None
    options: list[str] = field(default_factory=list)


def parse_integer(text: str) -> tuple[int, bool]:
    """Parse like ``strtoll(text, &end, 0)``.

    Returns the clamped value and whether the whole string was consumed.
    """

    match = _INTEGER_PATTERN.match(text)
    if match is None:
        return 0, False
    sign, digits = match.groups()
    if digits[:2] in ("0x", "0X"):
        number = int(digits[2:], 16)
    elif len(digits) > 1 and digits[0] == "0":
        number = int(digits[1:], 8)
    else:
        number = int(digits)
    if sign == "-":
        number = -number
    number = max(LLONG_MIN, min(LLONG_MAX, number))
    return number, match.end() == len(text)


def parse_bound(text: str | None, *, upper: bool) -> int | None:
    """Turn a textual bound into a nullable integer bound.

    The sentinel that marks "unset" in storage (``LLONG_MIN`` for the lower
    bound, ``LLONG_MAX`` for the upper one) is refused when supplied.
    """

    if text is None:
        return None
    try:
        number, complete = parse_integer(text)
    except ValueError as exc:
        raise BoundError(f"Bound {text!r} is not an integer") from exc
    if not complete:
        raise BoundError(f"Bound {text!r} is not an integer")
    if number == (LLONG_MAX if upper else LLONG_MIN):
        raise BoundError(f"Bound {text!r} is out of range")
    return number


def validate_value(
    param_type: ParamType | str,
    value: str,
    *,
    type_min: int | None = None,
    type_max: int | None = None,
    options: Sequence[str] = (),
) -> bool:
    param_type = ParamType(param_type)
    if param_type is ParamType.INTEGER:
        actual, _complete = parse_integer(value)
        return _within(actual, type_min, type_max)
    if param_type is ParamType.SELECTION:
        return value in options
    if param_type in (ParamType.STRING, ParamType.TEXT):
        return _within(len(value.encode("utf-8")), type_min, type_max)
    if param_type is ParamType.REPORT_FORMAT_LIST:
        return _REPORT_FORMAT_LIST_PATTERN.match(value) is not None
    return True


def _within(actual: int, type_min: int | None, type_max: int | None) -> bool:
    if type_min is not None and actual < type_min:
        return False
    if type_max is not None and actual > type_max:
        return False
    return True


def validate_param_row(param, value: str) -> bool:
    """Validate ``value`` against a stored parameter row."""

    return validate_value(
        param.type,
        value,
        type_min=param.type_min,
        type_max=param.type_max,
        options=[option.value for option in param.options],
    )


def split_report_format_list(value: str) -> list[str]:
    return [entry for entry in value.split(",") if entry]

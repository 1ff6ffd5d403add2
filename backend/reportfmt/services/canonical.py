"""Canonical byte form of a report format, the payload that signatures cover."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .params import ParamSpec, parse_bound

# purpose: serialize identity, files and params exactly as feed signers do
# status: production
# depends_on: backend.reportfmt.services.params


@dataclass(frozen=True)
class CanonicalIdentity:
    uuid: str
    extension: str
    content_type: str
    global_: bool = False


@dataclass(frozen=True)
class CanonicalParam:
    name: str
    type_name: str
    fallback: str
    type_min: int | None = None
    type_max: int | None = None
    type_regex: str = ""
    options: Sequence[str] = field(default_factory=tuple)


def canonicalize(
    identity: CanonicalIdentity,
    files: Iterable[tuple[str, bytes]],
    params: Iterable[CanonicalParam],
) -> bytes:
    """Build the canonical form.

    Files are ordered by the bytes of their names and contribute their
    name followed by their base64 content. Bounds only appear when set.
    """

    parts = [
        identity.uuid,
        identity.extension or "",
        identity.content_type or "",
        "1" if identity.global_ else "0",
    ]
    for name, content in sorted(files, key=lambda entry: entry[0].encode("utf-8")):
        parts.append(name)
        parts.append(base64.b64encode(content).decode("ascii"))
    for param in params:
        parts.append(param.name)
        parts.append(param.type_name)
        if param.type_min is not None:
            parts.append(str(param.type_min))
        if param.type_max is not None:
            parts.append(str(param.type_max))
        parts.append(param.type_regex or "")
        parts.append(param.fallback or "")
        parts.extend(param.options)
    parts.append("\n")
    return "".join(parts).encode("utf-8")


def params_from_specs(specs: Iterable[ParamSpec]) -> list[CanonicalParam]:
    """Canonical params for not yet stored input. Raises BoundError."""

    return [
        CanonicalParam(
            name=spec.name,
            type_name=spec.type or "",
            fallback=spec.fallback or "",
            type_min=parse_bound(spec.type_min, upper=False),
            type_max=parse_bound(spec.type_max, upper=True),
            options=tuple(spec.options),
        )
        for spec in specs
    ]


def params_from_rows(rows) -> list[CanonicalParam]:
    return [
        CanonicalParam(
            name=row.name,
            type_name=row.type,
            fallback=row.fallback,
            type_min=row.type_min,
            type_max=row.type_max,
            type_regex=row.type_regex or "",
            options=tuple(option.value for option in row.options),
        )
        for row in rows
    ]

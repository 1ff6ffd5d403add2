"""Parser for the report_format.xml descriptor shipped with feed formats."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

from .params import BoundError, ParamType, parse_bound

# purpose: turn a feed descriptor into plain data for the reconciler
# status: production
# depends_on: xml.etree.ElementTree

DESCRIPTOR_FILE = "report_format.xml"


class DescriptorError(ValueError):
    """Raised when a descriptor is unreadable or incomplete."""


@dataclass
class DescriptorParam:
    name: str
    type: ParamType
    value: str
    fallback: str
    type_min: int | None = None
    type_max: int | None = None
    options: list[str] = field(default_factory=list)


@dataclass
class Descriptor:
    name: str
    summary: str
    description: str
    extension: str
    content_type: str
    params: list[DescriptorParam] = field(default_factory=list)


def _text(element: ET.Element | None) -> str:
    if element is None:
        return ""
    return element.text or ""


def _required(parent: ET.Element, tag: str, where: str) -> ET.Element:
    child = parent.find(tag)
    if child is None:
        raise DescriptorError(f"Missing {tag} in {where}")
    return child


def _bound(type_element: ET.Element, tag: str, where: str) -> int | None:
    element = type_element.find(tag)
    text = _text(element).strip()
    if not text:
        return None
    try:
        return parse_bound(text, upper=tag == "max")
    except BoundError as exc:
        raise DescriptorError(f"Failed to parse {tag} in {where}: {exc}") from exc


def _parse_param(element: ET.Element, where: str) -> DescriptorParam:
    name = _text(_required(element, "name", where)).strip()
    fallback = _text(_required(element, "default", where)).strip()
    type_element = _required(element, "type", where)
    param_type = ParamType.from_name((type_element.text or "").strip())
    if param_type is None:
        raise DescriptorError(f"Error in param type in {where}")

    type_min = type_max = None
    options: list[str] = []
    value_element = _required(element, "value", where)
    if param_type is ParamType.REPORT_FORMAT_LIST:
        report_format = value_element.find("report_format")
        if report_format is None:
            raise DescriptorError(f"Param missing report format in {where}")
        value = report_format.get("id")
        if value is None:
            raise DescriptorError(f"Report format missing id in {where}")
    else:
        type_min = _bound(type_element, "min", where)
        type_max = _bound(type_element, "max", where)
        if param_type is ParamType.SELECTION:
            options_element = type_element.find("options")
            if options_element is None:
                raise DescriptorError(f"Selection missing options in {where}")
            options = [_text(option) for option in options_element]
        value = _text(value_element)

    return DescriptorParam(
        name=name,
        type=param_type,
        value=value.strip(),
        fallback=fallback,
        type_min=type_min,
        type_max=type_max,
        options=options,
    )


def parse_descriptor(data: bytes | str, *, where: str = DESCRIPTOR_FILE) -> Descriptor:
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise DescriptorError(f"Failed to parse {where}: {exc}") from exc

    fields = {
        tag: _text(_required(root, tag, where)).strip()
        for tag in ("name", "summary", "description", "extension", "content_type")
    }
    params = [_parse_param(element, where) for element in root.findall("param")]
    return Descriptor(params=params, **fields)


def load_descriptor(path: str) -> Descriptor:
    try:
        with open(path, "rb") as handle:
            data = handle.read()
    except OSError as exc:
        raise DescriptorError(f"Failed to read {path}: {exc}") from exc
    return parse_descriptor(data, where=path)

"""Conversion between Python data and qbXML documents.

Requests are plain nested data:

- a dict becomes child elements, in insertion order
- a key starting with ``@`` becomes an attribute
- a list under a key repeats that element, unless every item is a dict
  carrying ``_tag``; then the list is the element's content and each
  item is emitted as a child named by its ``_tag``
- None becomes an empty element, booleans become ``true``/``false``

So ``{"QBXMLMsgsRq": [{"_tag": "CompanyQueryRq"}]}`` encodes as
``<QBXMLMsgsRq onError="stopOnError"><CompanyQueryRq/></QBXMLMsgsRq>``.

Responses are parsed back into the same shape: leaf elements become
strings, attributes become ``@name`` keys and repeated siblings become lists.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from lxml import etree

from .errors import ResponseFormatError

ROOT_TAG = "QBXML"
# qbXML requires the sign-on block ahead of the message set.
ENVELOPE_ORDER = ("SignonMsgsRq", "QBXMLMsgsRq")
DEFAULT_ON_ERROR = "stopOnError"


def time2iso(timestamp: float | None = None) -> str:
    """Format a timestamp as a qbXML ClientDateTime (local time)."""
    moment = datetime.now() if timestamp is None else datetime.fromtimestamp(timestamp)
    return moment.strftime("%Y-%m-%dT%H:%M:%S")


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _is_tagged_list(value: list[Any] | tuple[Any, ...]) -> bool:
    return bool(value) and all(
        isinstance(item, Mapping) and "_tag" in item for item in value
    )


def _fill(element: etree._Element, value: Any) -> None:
    if value is None:
        return
    if isinstance(value, Mapping):
        for key, child in value.items():
            if key == "_tag":
                continue
            if key.startswith("@"):
                element.set(key[1:], _text(child))
            else:
                _append(element, key, child)
    elif isinstance(value, (list, tuple)) and _is_tagged_list(value):
        for item in value:
            _append(element, item["_tag"], item)
    else:
        element.text = _text(value)


def _append(parent: etree._Element, tag: str, value: Any) -> None:
    if isinstance(value, (list, tuple)) and not _is_tagged_list(value):
        for item in value:
            _append(parent, tag, item)
        return
    _fill(etree.SubElement(parent, tag), value)


def format_xml(request: Mapping[str, Any], version: str = "6.0") -> bytes:
    """Encode a request mapping as a complete qbXML document."""
    root = etree.Element(ROOT_TAG)
    keys = [k for k in ENVELOPE_ORDER if k in request]
    keys += [k for k in request if k not in ENVELOPE_ORDER]
    for key in keys:
        _append(root, key, request[key])

    for msgs in root.findall("QBXMLMsgsRq"):
        if msgs.get("onError") is None:
            msgs.set("onError", DEFAULT_ON_ERROR)

    root.addprevious(etree.ProcessingInstruction("qbxml", f'version="{version}"'))
    return etree.tostring(
        root.getroottree(), xml_declaration=True, encoding="utf-8"
    )


def _convert(element: etree._Element) -> Any:
    children = [c for c in element if isinstance(c.tag, str)]
    if not children and not element.attrib:
        return element.text or ""

    data: dict[str, Any] = {f"@{k}": v for k, v in element.attrib.items()}
    text = (element.text or "").strip()
    if text:
        data["_text"] = text
    for child in children:
        value = _convert(child)
        if child.tag in data:
            existing = data[child.tag]
            if isinstance(existing, list):
                existing.append(value)
            else:
                data[child.tag] = [existing, value]
        else:
            data[child.tag] = value
    return data


def parse_xml(document: str | bytes) -> dict[str, Any]:
    """Decode a qbXML document into nested data (the children of <QBXML>)."""
    if isinstance(document, str):
        document = document.encode("utf-8")

    parser = etree.XMLParser(
        remove_blank_text=True, resolve_entities=False, no_network=True
    )
    try:
        root = etree.fromstring(document, parser)
    except etree.XMLSyntaxError as e:
        raise ResponseFormatError(f"Malformed qbXML response: {e}") from e

    if root.tag != ROOT_TAG:
        raise ResponseFormatError(
            f"Expected <{ROOT_TAG}> document, got <{root.tag}>"
        )

    data = _convert(root)
    return data if isinstance(data, dict) else {}

"""XML <-> dict conversion for REST documents.

xml_to_dict turns an XML response body into plain Python data, the same shape
a JsonDeserializer would produce, so callers can treat XML and JSON endpoints
alike. dict_to_xml is the inverse used by RestCommandBuilder.xml_body().

Mapping rules (both directions):
- The single top-level key is the root element.
- ``@name`` keys are attributes; ``#text`` holds text next to children or
  attributes.
- Repeated sibling tags are lists.
- Empty elements are None.
Namespace URIs are stripped when parsing and never emitted.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any

ATTRIBUTE_PREFIX = "@"
TEXT_KEY = "#text"


def xml_to_dict(
    xml_bytes: bytes | str,
    force_list: set[str] | None = None,
) -> dict[str, Any]:
    """Parse an XML document into a dict keyed by the root tag.

    Args:
        xml_bytes: The XML document.
        force_list: Tags that are always lists, even with a single occurrence.

    Raises:
        ET.ParseError: If the document is not well-formed.
    """
    root = ET.fromstring(xml_bytes)
    return {_local_name(root.tag): _from_element(root, force_list or set())}


def _local_name(tag: str) -> str:
    """``{urn:ns}Name`` -> ``Name``."""
    if tag.startswith("{"):
        return tag.rsplit("}", 1)[1]
    return tag


def _from_element(element: ET.Element, force_list: set[str]) -> Any:
    node: dict[str, Any] = {}

    for name, value in element.attrib.items():
        # xmlns declarations and namespaced attributes are not data
        if name.startswith("xmlns") or name.startswith("{"):
            continue
        node[ATTRIBUTE_PREFIX + name] = value

    grouped: dict[str, list[Any]] = {}
    for child in element:
        grouped.setdefault(_local_name(child.tag), []).append(
            _from_element(child, force_list)
        )
    for tag, values in grouped.items():
        node[tag] = values if (len(values) > 1 or tag in force_list) else values[0]

    text = (element.text or "").strip()
    if not node:
        return text or None
    if text:
        node[TEXT_KEY] = text
    return node


def dict_to_xml(data: dict[str, Any]) -> bytes:
    """Serialize a single-root dict into UTF-8 XML bytes with a declaration.

    Raises:
        ValueError: If data is not a dict with exactly one key.
    """
    if not isinstance(data, dict) or len(data) != 1:
        count = len(data) if isinstance(data, dict) else "N/A"
        raise ValueError(
            "dict_to_xml expects a dict with exactly one top-level key (the root element), "
            f"got {type(data).__name__} with {count} keys"
        )
    (root_tag, root_value), = data.items()
    root = _to_element(root_tag, root_value)
    ET.indent(root)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _to_element(tag: str, value: Any) -> ET.Element:
    element = ET.Element(tag)
    if value is None:
        return element

    if isinstance(value, dict):
        for key, child in value.items():
            if key == TEXT_KEY:
                element.text = _scalar_text(child)
            elif key.startswith(ATTRIBUTE_PREFIX):
                element.set(key[len(ATTRIBUTE_PREFIX):], _scalar_text(child))
            elif isinstance(child, list):
                for item in child:
                    element.append(_to_element(key, item))
            else:
                element.append(_to_element(key, child))
    elif isinstance(value, list):
        for item in value:
            element.append(_to_element("item", item))
    else:
        element.text = _scalar_text(value)
    return element

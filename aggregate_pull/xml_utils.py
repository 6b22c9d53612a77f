"""Namespace-agnostic helpers over ElementTree.

Aggregate answers with documents in several namespaces (OpenRosa manifests,
submission lists, cursors). Lookups here match on local names only.
"""

from typing import List, Optional
from xml.etree import ElementTree as ET


def parse(text) -> ET.Element:
    if isinstance(text, bytes):
        return ET.fromstring(text)
    return ET.fromstring(text.encode("utf-8"))


def local_name(element: ET.Element) -> str:
    tag = element.tag
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def find_elements(element: ET.Element, name: str) -> List[ET.Element]:
    """Direct children of `element` whose local name is `name`."""
    return [child for child in element if local_name(child) == name]


def find_element(element: ET.Element, name: str) -> Optional[ET.Element]:
    for child in element:
        if local_name(child) == name:
            return child
    return None


def maybe_value(element: Optional[ET.Element]) -> Optional[str]:
    if element is None or element.text is None:
        return None
    value = element.text.strip()
    return value or None


def child_value(element: ET.Element, name: str) -> Optional[str]:
    return maybe_value(find_element(element, name))


def first_child(element: ET.Element) -> Optional[ET.Element]:
    for child in element:
        return child
    return None


def serialize(element: ET.Element) -> str:
    tag = element.tag
    if isinstance(tag, str) and tag.startswith("{"):
        namespace = tag[1:].split("}", 1)[0]
        try:
            return ET.tostring(element, encoding="unicode", default_namespace=namespace)
        except ValueError:
            # Mixed qualified and unqualified children
            pass
    return ET.tostring(element, encoding="unicode")

"""Reads the preferred order of CPU cooling devices from an XML file."""

from __future__ import annotations

import logging
import os
import xml.etree.ElementTree as ET

log = logging.getLogger(__name__)

TDCONFDIR = "/etc/thermald"
DEFAULT_ORDER_FILE = os.path.join(TDCONFDIR, "thermal-cpu-cdev-order.xml")
_ORDER_TAG = "CoolingDeviceOrder"


def _element_text(element: ET.Element) -> str | None:
    parts = [element.text] + [child.tail for child in element]
    if all(part is None for part in parts):
        return None
    return "".join(part for part in parts if part is not None)


def parse_cdev_order(text: str) -> list[str]:
    """Return the cooling device names listed under a CoolingDeviceOrder root."""
    try:
        root = ET.fromstring(text)
    except ET.ParseError as exc:
        raise ValueError(f"could not parse cooling device order: {exc}") from exc
    if root.tag != _ORDER_TAG:
        return []
    order = []
    for child in root:
        value = _element_text(child)
        if value is not None:
            log.info("node type: Element, name: %s value: %s", child.tag, value)
            order.append(value)
    return order


def load_cdev_order(path: str = DEFAULT_ORDER_FILE) -> list[str]:
    """Read and parse a cooling device order file."""
    with open(path, encoding="utf-8") as handle:
        return parse_cdev_order(handle.read())
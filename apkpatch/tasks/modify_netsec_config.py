"""
apkpatch/tasks/modify_netsec_config.py — Trust user-installed CA certificates.

Creates the network security config resource if the app has none, otherwise
rewrites it so that the base config, every domain config and the debug
overrides trust both ``system`` and ``user`` certificates, with all
``<pin-set>`` elements removed.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from pathlib import Path

logger = logging.getLogger(__name__)

_TRUSTED_SOURCES = ("system", "user")


def _trust_all(config: ET.Element) -> None:
    anchors = config.find("trust-anchors")
    if anchors is None:
        anchors = ET.SubElement(config, "trust-anchors")
    present = {c.get("src") for c in anchors.findall("certificates")}
    for src in _TRUSTED_SOURCES:
        if src not in present:
            ET.SubElement(anchors, "certificates", {"src": src})


def _drop_pins(config: ET.Element) -> int:
    pin_sets = config.findall("pin-set")
    for pin_set in pin_sets:
        config.remove(pin_set)
    return len(pin_sets)


def modify_netsec_config(path: Path | str) -> int:
    """
    Write or rewrite the network security config at ``path``.

    Returns:
        Number of ``<pin-set>`` elements removed.
    """
    path = Path(path)
    if path.exists():
        tree = ET.parse(path)
        root = tree.getroot()
    else:
        logger.info("No network security config at %s — creating one", path)
        root = ET.Element("network-security-config")
        tree = ET.ElementTree(root)

    base = root.find("base-config")
    if base is None:
        base = ET.Element("base-config")
        root.insert(0, base)
    _trust_all(base)

    removed = 0
    for config in root.iter("domain-config"):
        removed += _drop_pins(config)
        _trust_all(config)

    debug = root.find("debug-overrides")
    if debug is not None:
        _trust_all(debug)

    ET.indent(tree)
    path.parent.mkdir(parents=True, exist_ok=True)
    tree.write(path, encoding="utf-8", xml_declaration=True)
    logger.info("Network security config written to %s (%d pin sets removed)", path, removed)
    return removed

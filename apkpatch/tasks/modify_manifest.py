"""
apkpatch/tasks/modify_manifest.py — Point the app at a network security config.

Marks the application debuggable, makes sure ``android:networkSecurityConfig``
references an ``@xml/`` resource, and reports whether the app is one split
of an app bundle.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path

from apkpatch.core.constants import C

logger = logging.getLogger(__name__)

ANDROID_NS = "http://schemas.android.com/apk/res/android"

# Keep the usual prefixes when the tree is written back.
for _prefix, _uri in (
    ("android", ANDROID_NS),
    ("tools", "http://schemas.android.com/tools"),
    ("dist", "http://schemas.android.com/apk/distribution"),
):
    ET.register_namespace(_prefix, _uri)

_ATTR_NAME = f"{{{ANDROID_NS}}}name"
_ATTR_DEBUGGABLE = f"{{{ANDROID_NS}}}debuggable"
_ATTR_NSC = f"{{{ANDROID_NS}}}networkSecurityConfig"


class ManifestError(ValueError):
    """Raised when the manifest has no ``<application>`` element."""


@dataclass(frozen=True)
class ManifestResult:
    nsc_name: str
    uses_app_bundle: bool


def modify_manifest(path: Path | str) -> ManifestResult:
    """
    Rewrite ``AndroidManifest.xml`` in place.

    Args:
        path: Decoded manifest path.

    Returns:
        The network security config resource name and the app bundle flag.

    Raises:
        ManifestError: If the manifest lacks an ``<application>`` element.
    """
    path = Path(path)
    tree = ET.parse(path)
    application = tree.getroot().find("application")
    if application is None:
        raise ManifestError(f"No <application> element in {path}")

    application.set(_ATTR_DEBUGGABLE, "true")

    reference = application.get(_ATTR_NSC)
    if reference and reference.startswith("@xml/"):
        nsc_name = reference[len("@xml/"):]
    else:
        if reference:
            logger.warning("Replacing unsupported networkSecurityConfig %r", reference)
        nsc_name = C.DEFAULT_NSC_NAME
        application.set(_ATTR_NSC, f"@xml/{nsc_name}")

    uses_app_bundle = any(
        meta.get(_ATTR_NAME) in C.APP_BUNDLE_META_NAMES
        for meta in application.iter("meta-data")
    )

    tree.write(path, encoding="utf-8", xml_declaration=True)
    logger.info("Manifest patched (nsc=%s, app bundle=%s)", nsc_name, uses_app_bundle)
    return ManifestResult(nsc_name=nsc_name, uses_app_bundle=uses_app_bundle)

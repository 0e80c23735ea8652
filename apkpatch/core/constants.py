"""
apkpatch/core/constants.py — All system constants for apkpatch.

Single frozen dataclass with typed constant groups: step statuses (Enum),
temporary layout names, step titles and Android resource names.
Call ``PatchConstants.validate()`` on startup to check for a Java runtime.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Step statuses
# ──────────────────────────────────────────────────────────────

class StepStatus(Enum):
    """All valid states of a single pipeline step."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


# ──────────────────────────────────────────────────────────────
# Frozen constants dataclass
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PatchConstants:
    """
    Frozen dataclass holding all apkpatch constants.

    Use the class attributes directly — do not instantiate this class.

    Example::

        from apkpatch.core.constants import C

        print(C.TMP_APK_NAME)   # tmp.apk
        C.validate()
    """

    # ── Temporary layout ──────────────────────────────────────
    DECODE_DIR_NAME: ClassVar[str] = "decode"
    """Directory under the tmp dir that holds the decoded tree."""

    FRAMEWORK_DIR_NAME: ClassVar[str] = "frameworks"
    """apktool framework cache, kept per run so runs never share it."""

    TMP_APK_NAME: ClassVar[str] = "tmp.apk"
    """Rebuilt artifact produced by the encode stage and signed in place."""

    LOCK_FILE_NAME: ClassVar[str] = ".apkpatch.lock"
    """Marks a tmp dir as owned by an active run."""

    MANIFEST_NAME: ClassVar[str] = "AndroidManifest.xml"

    # ── Android resources ─────────────────────────────────────
    DEFAULT_NSC_NAME: ClassVar[str] = "network_security_config"
    """Resource name used when the app has no network security config yet."""

    APP_BUNDLE_META_NAMES: ClassVar[tuple[str, ...]] = (
        "com.android.vending.splits",
        "com.android.vending.splits.required",
    )
    """``<meta-data>`` names that mark an app as split into several APKs."""

    # ── Step titles ───────────────────────────────────────────
    TITLE_DOWNLOAD: ClassVar[str] = "Downloading tools"
    TITLE_DECODE: ClassVar[str] = "Decoding APK file"
    TITLE_MANIFEST: ClassVar[str] = "Modifying app manifest"
    TITLE_NSC: ClassVar[str] = "Modifying network security config"
    TITLE_PINNING: ClassVar[str] = "Disabling certificate pinning"
    TITLE_WAIT: ClassVar[str] = "Waiting for you to make changes"
    TITLE_ENCODE: ClassVar[str] = "Encoding patched APK file"
    TITLE_ENCODE_AAPT2: ClassVar[str] = "Encoding using AAPT2"
    TITLE_ENCODE_AAPT: ClassVar[str] = "Encoding using AAPT [fallback]"
    TITLE_SIGN: ClassVar[str] = "Signing patched APK file"

    # ── Messages ──────────────────────────────────────────────
    PAUSE_PROMPT: ClassVar[str] = "Press any key to continue."
    FALLBACK_REASON: ClassVar[str] = "Failed, falling back to AAPT..."

    # ─────────────────────────────────────────────────────────
    # Startup validation
    # ─────────────────────────────────────────────────────────

    @classmethod
    def validate(cls, java: str = "java") -> bool:
        """
        Check that a Java runtime is reachable on ``PATH``.

        Does not raise — both bundled tools are jars, so a missing runtime is
        logged as a warning and the decode step will report the real error.

        Args:
            java: Java executable name or path.

        Returns:
            True if the executable was found.
        """
        resolved = shutil.which(java)
        if resolved is None:
            logger.warning(
                "Java runtime %r not found on PATH — apktool and "
                "uber-apk-signer will fail to start.",
                java,
            )
            return False
        logger.info("Java OK: %s", resolved)
        return True


# ──────────────────────────────────────────────────────────────
# Module-level convenience alias
# ──────────────────────────────────────────────────────────────

#: Convenience alias — ``from apkpatch.core.constants import C``
C = PatchConstants

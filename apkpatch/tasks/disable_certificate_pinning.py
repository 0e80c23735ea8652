"""
apkpatch/tasks/disable_certificate_pinning.py — Neutralise custom trust managers.

Scans every smali class that implements ``javax.net.ssl.X509TrustManager``
and replaces the bodies of ``checkClientTrusted``/``checkServerTrusted`` with
``return-void`` and ``getAcceptedIssuers`` with an empty array, so that the
app accepts any certificate chain the proxy presents.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from apkpatch.pipeline.steps import StepHandle

logger = logging.getLogger(__name__)

_TRUST_MANAGER = ".implements Ljavax/net/ssl/X509TrustManager;"

_CHECK_METHOD = re.compile(
    r"^(?P<decl>\.method (?P<mods>[^\n]*?)"
    r"check(?:Client|Server)Trusted"
    r"\(\[Ljava/security/cert/X509Certificate;Ljava/lang/String;\)V\n)"
    r"(?P<body>.*?)"
    r"^\.end method",
    re.MULTILINE | re.DOTALL,
)

_ISSUERS_METHOD = re.compile(
    r"^(?P<decl>\.method (?P<mods>[^\n]*?)"
    r"getAcceptedIssuers\(\)\[Ljava/security/cert/X509Certificate;\n)"
    r"(?P<body>.*?)"
    r"^\.end method",
    re.MULTILINE | re.DOTALL,
)

_CHECK_BODY = "    .locals 0\n\n    return-void\n"

_ISSUERS_BODY = (
    "    .locals 1\n\n"
    "    const/4 v0, 0x0\n\n"
    "    new-array v0, v0, [Ljava/security/cert/X509Certificate;\n\n"
    "    return-object v0\n"
)


def _replace_bodies(pattern: re.Pattern[str], body: str, source: str) -> str:
    def _sub(match: re.Match[str]) -> str:
        if "abstract" in match.group("mods").split():
            return match.group(0)
        return f"{match.group('decl')}{body}.end method"

    return pattern.sub(_sub, source)


def patch_smali(source: str) -> str:
    """Return ``source`` with its trust manager methods neutralised."""
    if _TRUST_MANAGER not in source:
        return source
    patched = _replace_bodies(_CHECK_METHOD, _CHECK_BODY, source)
    return _replace_bodies(_ISSUERS_METHOD, _ISSUERS_BODY, patched)


def disable_certificate_pinning(
    decode_dir: Path | str,
    task: Optional[StepHandle] = None,
) -> int:
    """
    Patch every trust manager under the ``smali*`` directories of ``decode_dir``.

    Args:
        decode_dir: Decoded APK tree.
        task: Handle of the running step; receives one progress line per
            patched file.

    Returns:
        Number of smali files changed.
    """
    decode_dir = Path(decode_dir)
    patched_files = 0
    for smali_root in sorted(decode_dir.glob("smali*")):
        for smali_file in sorted(smali_root.rglob("*.smali")):
            source = smali_file.read_text(encoding="utf-8")
            patched = patch_smali(source)
            if patched == source:
                continue
            smali_file.write_text(patched, encoding="utf-8")
            patched_files += 1
            relative = smali_file.relative_to(decode_dir).as_posix()
            logger.debug("Patched trust manager in %s", relative)
            if task is not None:
                task.output(f"Applied X509TrustManager patch to {relative}")

    if patched_files == 0 and task is not None:
        task.output("No custom trust managers found")
    logger.info("Certificate pinning disabled in %d file(s)", patched_files)
    return patched_files

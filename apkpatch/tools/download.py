"""
apkpatch/tools/download.py — Fetch the apktool and uber-apk-signer jars.

Jars are downloaded once into the configured tools directory and reused by
every later run. Downloads go to a ``.part`` file first and are renamed only
when complete, so an interrupted download never leaves a truncated jar behind.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import requests

from apkpatch.core.config import ToolsConfig

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class DownloadError(RuntimeError):
    """Raised when a tool jar cannot be downloaded."""


def download_file(url: str, dest: Path, timeout: int = 60) -> Iterator[str]:
    """
    Stream ``url`` into ``dest``, yielding progress lines.

    Raises:
        DownloadError: On any HTTP or connection failure.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    partial = dest.with_name(dest.name + ".part")
    try:
        with requests.get(url, stream=True, timeout=timeout) as r:
            r.raise_for_status()
            total = int(r.headers.get("content-length") or 0)
            written = 0
            last_pct = -1
            with open(partial, "wb") as fh:
                for chunk in r.iter_content(chunk_size=_CHUNK_SIZE):
                    if not chunk:
                        continue
                    fh.write(chunk)
                    written += len(chunk)
                    if total:
                        pct = written * 100 // total
                        if pct // 10 > last_pct // 10:
                            last_pct = pct
                            yield f"{dest.name}: {pct}%"
    except requests.RequestException as exc:
        partial.unlink(missing_ok=True)
        raise DownloadError(f"Download of {url} failed: {exc}") from exc

    partial.replace(dest)
    logger.info("Downloaded %s → %s", url, dest)


def download_tools(config: ToolsConfig) -> Iterator[str]:
    """Make sure both jars exist in the tools directory, downloading as needed."""
    jobs = [
        ("apktool", config.apktool_version, config.apktool_url, config.apktool_jar),
        (
            "uber-apk-signer",
            config.uber_apk_signer_version,
            config.uber_apk_signer_url,
            config.uber_apk_signer_jar,
        ),
    ]
    for name, version, url_template, dest in jobs:
        if dest.exists():
            yield f"{name} {version} already downloaded"
            continue
        yield f"Downloading {name} {version}"
        yield from download_file(
            url_template.format(version=version),
            dest,
            timeout=config.download_timeout_s,
        )

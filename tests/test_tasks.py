"""
tests/test_tasks.py — Tests for the decoded-tree modifications.

Manifest, network security config and smali patching are pure file
rewrites, so every test works on files inside ``tmp_path``.
"""

from __future__ import annotations

import unittest
import xml.etree.ElementTree as ET
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from conftest import MANIFEST_XML

from apkpatch.tasks.disable_certificate_pinning import (
    disable_certificate_pinning,
    patch_smali,
)
from apkpatch.tasks.modify_manifest import (
    ANDROID_NS,
    ManifestError,
    modify_manifest,
)
from apkpatch.tasks.modify_netsec_config import modify_netsec_config

_A = f"{{{ANDROID_NS}}}"


# ──────────────────────────────────────────────────────────────
# Manifest
# ──────────────────────────────────────────────────────────────

def _write_manifest(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "AndroidManifest.xml"
    path.write_text(text, encoding="utf-8")
    return path


class TestModifyManifest(unittest.TestCase):

    def setUp(self) -> None:
        import tempfile
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp_path = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_default_config_reference_added(self) -> None:
        path = _write_manifest(self.tmp_path, MANIFEST_XML)

        result = modify_manifest(path)

        self.assertEqual(result.nsc_name, "network_security_config")
        self.assertFalse(result.uses_app_bundle)
        app = ET.parse(path).getroot().find("application")
        self.assertEqual(app.get(f"{_A}debuggable"), "true")
        self.assertEqual(app.get(f"{_A}networkSecurityConfig"), "@xml/network_security_config")
        self.assertEqual(app.get(f"{_A}label"), "@string/app_name")

    def test_existing_config_reference_reused(self) -> None:
        text = MANIFEST_XML.replace(
            'android:label="@string/app_name"',
            'android:label="@string/app_name" android:networkSecurityConfig="@xml/net_rules"',
        )
        path = _write_manifest(self.tmp_path, text)

        result = modify_manifest(path)

        self.assertEqual(result.nsc_name, "net_rules")
        app = ET.parse(path).getroot().find("application")
        self.assertEqual(app.get(f"{_A}networkSecurityConfig"), "@xml/net_rules")

    def test_app_bundle_detected_from_meta_data(self) -> None:
        text = MANIFEST_XML.replace(
            '<activity android:name=".MainActivity"/>',
            '<activity android:name=".MainActivity"/>\n'
            '        <meta-data android:name="com.android.vending.splits.required"'
            ' android:value="true"/>',
        )
        path = _write_manifest(self.tmp_path, text)

        self.assertTrue(modify_manifest(path).uses_app_bundle)

    def test_namespace_prefix_preserved(self) -> None:
        path = _write_manifest(self.tmp_path, MANIFEST_XML)
        modify_manifest(path)
        text = path.read_text(encoding="utf-8")
        self.assertIn("android:debuggable", text)
        self.assertNotIn("ns0:", text)

    def test_missing_application_raises(self) -> None:
        path = _write_manifest(
            self.tmp_path,
            f'<manifest xmlns:android="{ANDROID_NS}" package="x"/>',
        )
        with self.assertRaises(ManifestError):
            modify_manifest(path)


# ──────────────────────────────────────────────────────────────
# Network security config
# ──────────────────────────────────────────────────────────────

def _sources(element: ET.Element) -> set:
    return {c.get("src") for c in element.find("trust-anchors").findall("certificates")}


def test_netsec_config_created_when_missing(tmp_path: Path) -> None:
    path = tmp_path / "res" / "xml" / "network_security_config.xml"

    removed = modify_netsec_config(path)

    assert removed == 0
    root = ET.parse(path).getroot()
    assert root.tag == "network-security-config"
    assert _sources(root.find("base-config")) == {"system", "user"}


def test_netsec_config_rewritten_and_pins_removed(tmp_path: Path) -> None:
    path = tmp_path / "nsc.xml"
    path.write_text(
        """<?xml version="1.0" encoding="utf-8"?>
<network-security-config>
    <domain-config>
        <domain includeSubdomains="true">example.com</domain>
        <pin-set expiration="2030-01-01">
            <pin digest="SHA-256">7HIpactkIAq2Y49orFOOQKurWxmmSFZhBCoQYcRhJ3Y=</pin>
        </pin-set>
        <trust-anchors>
            <certificates src="@raw/my_ca"/>
        </trust-anchors>
    </domain-config>
    <debug-overrides>
        <trust-anchors>
            <certificates src="system"/>
        </trust-anchors>
    </debug-overrides>
</network-security-config>
""",
        encoding="utf-8",
    )

    removed = modify_netsec_config(path)

    assert removed == 1
    root = ET.parse(path).getroot()
    assert list(root)[0].tag == "base-config"
    domain = root.find("domain-config")
    assert domain.find("pin-set") is None
    assert _sources(domain) == {"@raw/my_ca", "system", "user"}
    assert domain.find("domain").text == "example.com"
    assert _sources(root.find("debug-overrides")) == {"system", "user"}


def test_netsec_config_idempotent(tmp_path: Path) -> None:
    path = tmp_path / "nsc.xml"
    modify_netsec_config(path)
    first = path.read_text(encoding="utf-8")
    modify_netsec_config(path)
    assert path.read_text(encoding="utf-8") == first


# ──────────────────────────────────────────────────────────────
# Certificate pinning
# ──────────────────────────────────────────────────────────────

_TRUST_MANAGER_SMALI = """.class public Lcom/example/PinningTrustManager;
.super Ljava/lang/Object;
.source "PinningTrustManager.java"

# interfaces
.implements Ljavax/net/ssl/X509TrustManager;


# virtual methods
.method public checkClientTrusted([Ljava/security/cert/X509Certificate;Ljava/lang/String;)V
    .locals 1

    new-instance v0, Ljava/security/cert/CertificateException;

    invoke-direct {v0}, Ljava/security/cert/CertificateException;-><init>()V

    throw v0
.end method

.method public checkServerTrusted([Ljava/security/cert/X509Certificate;Ljava/lang/String;)V
    .locals 2

    invoke-static {p1}, Lcom/example/Pins;->verify([Ljava/security/cert/X509Certificate;)V

    return-void
.end method

.method public getAcceptedIssuers()[Ljava/security/cert/X509Certificate;
    .locals 1

    iget-object v0, p0, Lcom/example/PinningTrustManager;->issuers:[Ljava/security/cert/X509Certificate;

    return-object v0
.end method
"""

_PLAIN_SMALI = """.class public Lcom/example/MainActivity;
.super Landroid/app/Activity;

.method public checkServerTrusted([Ljava/security/cert/X509Certificate;Ljava/lang/String;)V
    .locals 0
    throw p1
.end method
"""


def test_patch_smali_replaces_method_bodies() -> None:
    patched = patch_smali(_TRUST_MANAGER_SMALI)

    assert "CertificateException" not in patched
    assert "Pins;->verify" not in patched
    assert "iget-object" not in patched
    assert patched.count("return-void") == 2
    assert "new-array v0, v0, [Ljava/security/cert/X509Certificate;" in patched
    assert patched.startswith(".class public Lcom/example/PinningTrustManager;")


def test_patch_smali_leaves_other_classes_alone() -> None:
    assert patch_smali(_PLAIN_SMALI) == _PLAIN_SMALI


def test_patch_smali_keeps_abstract_methods() -> None:
    source = (
        ".class public abstract Lcom/example/Base;\n"
        ".implements Ljavax/net/ssl/X509TrustManager;\n\n"
        ".method public abstract checkServerTrusted("
        "[Ljava/security/cert/X509Certificate;Ljava/lang/String;)V\n"
        ".end method\n"
    )
    assert patch_smali(source) == source


def test_disable_certificate_pinning_walks_all_smali_dirs(tmp_path: Path) -> None:
    first = tmp_path / "smali" / "com" / "example" / "PinningTrustManager.smali"
    second = tmp_path / "smali_classes2" / "com" / "example" / "Other.smali"
    plain = tmp_path / "smali" / "com" / "example" / "MainActivity.smali"
    for path, text in ((first, _TRUST_MANAGER_SMALI), (second, _TRUST_MANAGER_SMALI), (plain, _PLAIN_SMALI)):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    task = MagicMock()

    count = disable_certificate_pinning(tmp_path, task)

    assert count == 2
    assert plain.read_text(encoding="utf-8") == _PLAIN_SMALI
    lines = [c.args[0] for c in task.output.call_args_list]
    assert lines == [
        "Applied X509TrustManager patch to smali/com/example/PinningTrustManager.smali",
        "Applied X509TrustManager patch to smali_classes2/com/example/Other.smali",
    ]


@pytest.mark.parametrize("with_task", [True, False])
def test_disable_certificate_pinning_without_trust_managers(tmp_path: Path, with_task: bool) -> None:
    (tmp_path / "smali").mkdir()
    task = MagicMock() if with_task else None

    assert disable_certificate_pinning(tmp_path, task) == 0
    if task is not None:
        task.output.assert_called_once_with("No custom trust managers found")

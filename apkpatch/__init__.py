"""
apkpatch — Prepare Android apps for HTTPS traffic inspection.

APK → apktool decode → manifest / network security config / pinning patches
→ apktool encode (AAPT2, AAPT fallback) → uber-apk-signer → patched APK.
"""

__version__ = "1.0.0"
__author__ = "apkpatch contributors"

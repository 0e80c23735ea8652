"""
tools — Adapters for the external Java tools (apktool, uber-apk-signer)
and the downloader that fetches them.
"""

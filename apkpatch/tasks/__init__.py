"""
tasks — In-place modifications of the decoded APK tree: manifest,
network security config and certificate pinning.
"""

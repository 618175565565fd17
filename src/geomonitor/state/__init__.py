"""State/store layer.

This package is the single source of truth for device records: the
durable per-device store, the directory-wide snapshot and the history
query all live here.
"""

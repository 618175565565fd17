"""Ingestion layer.

Adapters that turn raw device submissions (form fields or JSON bodies)
into validated points ready for the store.
"""

__all__: list[str] = []

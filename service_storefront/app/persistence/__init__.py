"""Persistence layer for the storefront service."""

from .mongo import MongoPersistence, new_id, serialize_document

__all__ = ["MongoPersistence", "new_id", "serialize_document"]

"""Catalog read path, admin writes and cache invalidation."""

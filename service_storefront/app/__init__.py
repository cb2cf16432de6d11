"""Storefront application package."""

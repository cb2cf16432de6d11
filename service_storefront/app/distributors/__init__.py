"""Distributor applications."""

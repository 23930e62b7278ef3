"""Catalog access, signal storage and recommendation services."""

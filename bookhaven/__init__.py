"""Cached Google Books catalog with per-user reading libraries."""

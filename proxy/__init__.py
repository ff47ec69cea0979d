"""Caching reverse proxy for sandbox preview URLs."""

"""Pydantic API contracts, grouped by resource."""

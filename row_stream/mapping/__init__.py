"""Mapping layer - transform rows into typed objects."""

from __future__ import annotations

from row_stream.mapping.model import ModelMapper

__all__ = [
    "ModelMapper",
]

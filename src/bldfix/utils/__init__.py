"""Small shared helpers."""

from .slug import find_collisions, sanitize_ref_component

__all__ = ["find_collisions", "sanitize_ref_component"]

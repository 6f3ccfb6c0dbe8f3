"""Filesystem helpers."""

from .file_ops import move_file, remove_file

__all__ = ["move_file", "remove_file"]

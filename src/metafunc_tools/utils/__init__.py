"""Utility helpers for metafunc_tools."""

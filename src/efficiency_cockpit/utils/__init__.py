"""Utility helpers shared by tracking, indexing and insights."""

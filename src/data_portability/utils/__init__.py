"""Utility helpers for data portability."""

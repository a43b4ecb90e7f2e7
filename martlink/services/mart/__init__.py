"""Mart service helpers."""

"""Utilities: domain exceptions and retry helpers."""

"""Shared helpers for monthly time index handling."""

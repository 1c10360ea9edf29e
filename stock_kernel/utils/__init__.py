"""Utility helpers for the stock kernel."""

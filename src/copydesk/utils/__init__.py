"""Utility helpers shared across copydesk packages."""

"""Reporting and on-disk artifacts."""

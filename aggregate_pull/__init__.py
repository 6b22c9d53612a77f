"""Incremental pull of forms and submissions from an ODK Aggregate server."""

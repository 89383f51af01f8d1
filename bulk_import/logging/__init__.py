"""Logging setup and the operator follow-up error log."""

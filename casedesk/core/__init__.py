"""Core configuration, errors, logging and time helpers."""

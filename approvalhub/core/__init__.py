"""Core configuration, errors, logging and workflow logic."""

"""Shared domain models and error taxonomy."""

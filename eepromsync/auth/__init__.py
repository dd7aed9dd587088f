"""Credential resolution and storage."""

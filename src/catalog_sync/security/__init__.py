"""Credential protection."""

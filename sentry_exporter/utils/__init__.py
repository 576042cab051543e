"""Shared helpers for error handling and retries."""

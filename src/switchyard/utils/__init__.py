"""Shared utilities for Switchyard."""

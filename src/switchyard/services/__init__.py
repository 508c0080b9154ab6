"""Routing services for Switchyard."""

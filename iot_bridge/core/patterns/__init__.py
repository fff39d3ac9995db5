"""Reusable patterns: connection state machine and delivery observers."""

"""Core coordination services."""

"""Wrappers around the system services and tools."""

"""Typed models used throughout the package."""

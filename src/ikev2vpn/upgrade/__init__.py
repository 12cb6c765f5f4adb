"""Build Libreswan from source and update its configuration."""

"""Shared helpers: subprocess, SDK discovery, configuration, output."""

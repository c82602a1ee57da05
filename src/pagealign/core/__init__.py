"""Compliance engine components."""

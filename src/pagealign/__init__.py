"""pagealign - 16 KB page-size compliance auditing for Android build outputs."""

__version__ = "0.1.0"

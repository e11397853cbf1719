"""EOS defenses: submission review and publishing bot."""

__version__ = "0.1.0"

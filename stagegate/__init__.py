"""stagegate: approval-gated feature workflow."""

__version__ = "0.1.0"

"""Report formatting and output adapters."""

from .formats import ReportingAdapter, TerminalReporter, generate_summary_markdown

__all__ = ["ReportingAdapter", "TerminalReporter", "generate_summary_markdown"]

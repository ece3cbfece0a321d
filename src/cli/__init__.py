"""Command line interface for the review engine."""

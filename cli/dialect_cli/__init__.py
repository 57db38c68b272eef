"""Command-line interface for the starlite-dialects translation engine."""

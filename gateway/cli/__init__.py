"""Command line interface for the provider gateway."""

"""Command-line entry points for scheduled billing jobs."""

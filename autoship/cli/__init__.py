"""Command-line entry point for the Autoship agent."""

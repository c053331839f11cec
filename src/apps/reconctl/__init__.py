"""Command line interface for running reconciliations and streams."""

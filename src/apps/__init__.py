"""Command line applications shipped with smartrecon."""

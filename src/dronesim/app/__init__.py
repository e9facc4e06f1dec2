"""Application layer — settings and command-line entry point."""

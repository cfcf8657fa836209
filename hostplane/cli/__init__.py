"""CLI de hostplane (typer)."""

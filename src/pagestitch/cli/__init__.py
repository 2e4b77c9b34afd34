"""pagestitch command-line interface (Typer)."""

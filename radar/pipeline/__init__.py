"""Run harness for connectors: single-source runs, cursor storage and the CLI."""

"""CLI command implementations. Each cmd_* takes (args, config) and returns an exit code."""

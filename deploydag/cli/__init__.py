"""deploydag command-line interface."""

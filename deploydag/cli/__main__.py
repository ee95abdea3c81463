#!/usr/bin/env python3
"""Entry point for the deploydag CLI when run as python -m deploydag.cli."""

if __name__ == "__main__":
    from deploydag.cli.main import main

    main()

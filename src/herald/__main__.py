"""Entry point for running the Herald worker as a module.

Usage:
    python -m herald

Configuration comes from HERALD_* environment variables.
"""

from .runner import main

if __name__ == "__main__":
    main()

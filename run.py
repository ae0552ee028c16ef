"""Entry point for the bookrag pipeline."""

import sys

from bookrag.cli import main

if __name__ == "__main__":
    sys.exit(main())

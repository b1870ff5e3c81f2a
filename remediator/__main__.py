"""Allow running as ``python -m remediator``."""

from .cli import main

if __name__ == "__main__":
    main()

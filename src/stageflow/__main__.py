"""Entry point for ``python -m stageflow``."""

from .cli import main

if __name__ == "__main__":
    main()

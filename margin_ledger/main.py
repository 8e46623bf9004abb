"""Entry point for ``python -m margin_ledger.main``."""
from .cli import main

if __name__ == "__main__":
    main()

"""
Allow running chronophoto as a module: python -m chronophoto
"""

from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())

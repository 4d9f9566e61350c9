#!/usr/bin/env python3
"""
Allow running mailtrust as a module: python -m mailtrust

Equivalent to the ``mailtrust`` console script.
"""

from mailtrust.cli import main

if __name__ == "__main__":
    raise SystemExit(main())

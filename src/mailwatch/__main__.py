"""
Module entry point for running mailwatch as a Python module.

Usage:
    python -m mailwatch check       # Poll every enabled account once
    python -m mailwatch service     # Run the polling service
    python -m mailwatch accounts    # List configured accounts
"""

from __future__ import annotations
from mailwatch.cli import main

if __name__ == "__main__":
    main()

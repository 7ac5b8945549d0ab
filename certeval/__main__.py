"""
Entry point for running certeval as a module.

Usage:
    python -m certeval chat
    python -m certeval score checks.yaml
"""

from .cli import main

if __name__ == "__main__":
    exit(main())

#!/usr/bin/env python3
"""
Convenience entry point for running slotkeeper directly.

Usage: python -m slotkeeper [command] [options]
"""

from slotkeeper.cli.app import app

if __name__ == "__main__":
    app()

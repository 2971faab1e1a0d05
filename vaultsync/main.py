#!/usr/bin/env python3
"""
vaultsync entry point: python -m vaultsync.main <command>
"""
from .cli import main

if __name__ == "__main__":
    main()

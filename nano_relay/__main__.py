"""
Entry point for running the relay as a module.

Usage:
    python -m nano_relay
"""

from nano_relay.cli import main

if __name__ == "__main__":
    main()

"""
Entry point for running partner_sync as a module.

Usage:
    python -m partner_sync --help
    python -m partner_sync sync --type accounts --full
    python -m partner_sync status
"""

from partner_sync.cli import cli

if __name__ == "__main__":
    cli()

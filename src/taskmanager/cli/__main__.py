"""TaskManager CLI module entry point.

Enables running the CLI via: python -m taskmanager.cli
"""

from taskmanager.cli.main import cli

if __name__ == "__main__":
    cli()

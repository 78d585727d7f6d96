"""context-engine CLI module entry point.

Enables running the CLI via: python -m context_engine.cli
"""

from context_engine.cli.main import cli

if __name__ == "__main__":
    cli()

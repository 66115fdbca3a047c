"""Entry point for running stepkeeper as a module.

Allows running the application with:
    python -m stepkeeper

This delegates to the Typer CLI app.
"""

from stepkeeper.cli import app

if __name__ == "__main__":
    app()

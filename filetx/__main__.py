# filetx/__main__.py
"""
Entry point for ``python -m filetx``.
"""
from filetx.cli import app

if __name__ == "__main__":
    app()

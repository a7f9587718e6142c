"""gworkspace-cli.

Command-line client for Google Workspace with a keyring-backed
credential store for OAuth refresh tokens.
"""

from gworkspace_cli.__version__ import __version__

__all__ = ["__version__"]

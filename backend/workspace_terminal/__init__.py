"""Workspace Terminal - interactive command sessions for hosted project workspaces"""

__version__ = "1.0.0"

"""Login server, login broker and gate server for the A3 online role-playing game."""

__version__ = "0.1.0"
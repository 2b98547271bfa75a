"""
pawnctl: dependency resolution and caching for Pawn packages.
"""

__version__ = "0.1.0"

"""
Costing kernel - persistence, typed errors, logging and domain values for the
inventory costing engine.
"""

__version__ = "0.3.0"

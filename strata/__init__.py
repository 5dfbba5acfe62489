"""
strata: a schema migration engine.

Tracks the evolution of a relational schema across versions, generates
reversible migrations from schema differences, and applies or reverts
them against a live database in a controlled, recoverable order.
"""

__version__ = '0.1.0'

__all__ = ['__version__']

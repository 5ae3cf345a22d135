"""
ArbanOS -- trust core for citizen vouching, trust levels and group
mutual verification.
"""

__version__ = "0.1.0"

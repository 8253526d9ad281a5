"""
Whale Watch - live large-transaction monitor for Ethereum.
"""

__version__ = "0.1.0"

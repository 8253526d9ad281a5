"""
Core module for shared context and exception types.
"""

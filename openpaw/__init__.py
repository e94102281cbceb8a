"""
OpenPaw — personal assistant agent with persistent memory.
"""

__version__ = "0.1.0"

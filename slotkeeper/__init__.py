"""
slotkeeper - appointment availability and conflict-prevention engine.
"""

__version__ = "0.1.0"

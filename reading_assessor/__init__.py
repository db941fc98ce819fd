"""
Spoken-reading assessment engine for remedial reading sessions.
"""

__version__ = "0.1.0"

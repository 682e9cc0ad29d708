"""
Pushbullet SMS bridge.

Buffers SMS notifications mirrored through Pushbullet and lets callers
list them, wait for a matching one and pull verification codes out.
"""

__version__ = "1.0.0"

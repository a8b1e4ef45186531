"""
Ralf - PRD-driven development loop.

Drives an external coding agent through a story set until every story passes.
"""

__version__ = "0.1.0"

"""
Ladder competition engine.

Challenge-driven competitive ladders with Elo and climb-the-ladder scoring,
backed by SQLAlchemy async storage. ``LadderEngine`` wires everything up.
"""

from .engine import LadderEngine

__all__ = ['LadderEngine']

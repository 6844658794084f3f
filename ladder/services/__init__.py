"""
Services package for the ladder engine.

Shared service base class, the access gate and event delivery.
"""

from .base import BaseService
from .events import EventDispatcher, EventSink, LadderEvent

__all__ = ['BaseService', 'EventDispatcher', 'EventSink', 'LadderEvent']

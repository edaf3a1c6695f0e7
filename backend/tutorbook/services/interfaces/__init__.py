"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .notifier import DomainEvent, Notifier
from .null_notifier import NullNotifier, RecordingNotifier

__all__ = ['DomainEvent', 'Notifier', 'NullNotifier', 'RecordingNotifier']

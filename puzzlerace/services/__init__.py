"""
Services package for the puzzle race client.
"""

from .base import BaseService
from .membership import MembershipReconciler
from .refresh import RefreshCoordinator

__all__ = ['BaseService', 'MembershipReconciler', 'RefreshCoordinator']

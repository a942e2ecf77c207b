# models module
"""
Package models : identité projetée et schémas d'échange API
"""

from .user import User

__all__ = ['User']

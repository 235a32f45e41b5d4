"""
Users Module - Profiles and address book.
"""

from bazaar.modules.users.service import UserService

__all__ = ["UserService"]

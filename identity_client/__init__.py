"""
Identity session client.

Client-side session manager for an email/password identity service: it
acquires, persists and refreshes tokens and notifies observers when the
signed-in subject changes.
"""

from identity_client.session import Auth

__all__ = ['Auth']

"""
Shared components of the identity session library.

This package contains the identity data model, collaborator interfaces,
the exception hierarchy and logging configuration.
"""

"""
Authentication package for the identity session client.

This package contains the session state, its persistence, observer
notification, bearer token refresh and the bundled storage backends.
"""

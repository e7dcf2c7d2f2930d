"""
neko-request - authenticated asynchronous HTTP request client.

Injects bearer credentials, performs one coordinated token refresh when the
server answers 401 and replays the waiting requests with the new tokens.
"""

__version__ = "0.1.0"

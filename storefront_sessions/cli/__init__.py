"""
Command-line interface for storefront sessions.

Usage:
    storefront-sessions gen-secret
    storefront-sessions issue --customer-id 42
    storefront-sessions inspect <token>
    storefront-sessions serve
    storefront-sessions version
"""

from storefront_sessions import __version__

__cli_name__ = "storefront-sessions"

"""
Faults - Structured error handling for storefront sessions.

Errors here are typed fault signals with a stable code, severity and
domain. Token verification hands faults back as values; storage and
configuration code raises them.
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
)

__all__ = [
    "Fault",
    "FaultDomain",
    "Severity",
]

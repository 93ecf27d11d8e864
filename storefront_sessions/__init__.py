"""
Storefront sessions - Token-based cart session continuity for headless storefronts.

A signed session token carried in a custom header stands in for the
cookie session identifier:
- Sessions: token codec, lifecycle manager, stores, ASGI middleware
- Faults: Structured error handling with fault domains
- Config: Layered settings (files, .env, environment)
"""

__version__ = "0.1.0"

from .config import ConfigLoader, Settings, ConfigFault, InsecureSecretFault
from .faults import Fault, FaultDomain, Severity

__all__ = [
    "__version__",
    "ConfigLoader",
    "Settings",
    "ConfigFault",
    "InsecureSecretFault",
    "Fault",
    "FaultDomain",
    "Severity",
]

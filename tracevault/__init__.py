"""TraceVault - tamper-evident audit ledger and traceability snapshot store.

Hash-chained audit records, electronic signature ceremonies, and immutable,
checksummed artifact history for compliance test-case management.
"""

__version__ = "0.1.0"
__author__ = "TraceVault Contributors"

from tracevault.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]

"""Application layer for TraceVault.

This layer orchestrates the audit ledger and traceability store without direct
filesystem or network I/O. All side effects are delegated to adapters via port
interfaces. Services are imported from their modules (``tracevault.app.audit_service``,
``tracevault.app.traceability_service``) so domain modules can depend on the
ports package without import cycles.
"""

"""Tamper-evident audit ledger: canonical hashing, chaining, and signatures."""

from tracevault.audit.canonical import canonicalize, hash_canonical
from tracevault.audit.ledger import (
    AUDIT_COLLECTION,
    AppendResult,
    AuditChainLedger,
    AuditQuery,
    AuditRecord,
    AuditRecordInput,
    AuditSignature,
    ChainVerification,
    diff_shallow,
)
from tracevault.audit.signing import SignatureCeremony, is_recent_auth

__all__ = [
    "AUDIT_COLLECTION",
    "AppendResult",
    "AuditChainLedger",
    "AuditQuery",
    "AuditRecord",
    "AuditRecordInput",
    "AuditSignature",
    "ChainVerification",
    "SignatureCeremony",
    "canonicalize",
    "diff_shallow",
    "hash_canonical",
    "is_recent_auth",
]

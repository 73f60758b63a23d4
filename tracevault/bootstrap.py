"""Application bootstrap wiring ports, adapters, and services."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tracevault.app.access import AccessPolicy
from tracevault.app.adapters import (
    FernetIdentityAdapter,
    FileSystemBlobStore,
    FileSystemDocumentStore,
    JsonlMirrorAdapter,
)
from tracevault.app.audit_service import AuditService
from tracevault.app.ports import BlobStorePort, DocumentStorePort, MirrorPort
from tracevault.app.traceability_service import TraceabilityService
from tracevault.audit.ledger import AuditChainLedger
from tracevault.audit.signing import SignatureCeremony
from tracevault.config import Settings, get_settings
from tracevault.traceability.history import HistoryLedger
from tracevault.traceability.snapshots import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ApplicationContainer:
    """Aggregates wired services and adapters for the CLI layer."""

    settings: Settings
    document_store: DocumentStorePort
    blob_store: BlobStorePort
    identity: FernetIdentityAdapter
    mirror: MirrorPort | None
    access_policy: AccessPolicy
    ledger: AuditChainLedger
    ceremony: SignatureCeremony
    snapshot_store: SnapshotStore
    history_ledger: HistoryLedger
    audit_service: AuditService
    traceability_service: TraceabilityService


def _create_mirror(settings: Settings) -> MirrorPort | None:
    if not settings.mirror_enabled:
        return None
    path = settings.get_mirror_path()
    logger.debug("Mirroring audit events to %s", path)
    return JsonlMirrorAdapter(path)


def bootstrap_application(settings: Settings | None = None) -> ApplicationContainer:
    """Instantiate adapters and services for CLI consumption."""

    active_settings = settings or get_settings()

    document_store = FileSystemDocumentStore(
        active_settings.get_documents_dir(),
        lock_timeout=active_settings.lock_timeout_seconds,
    )
    blob_store = FileSystemBlobStore(
        active_settings.get_blobs_dir(),
        url_key=active_settings.get_url_signing_key(),
    )
    identity = FernetIdentityAdapter(
        active_settings.get_identity_key(),
        ttl_seconds=active_settings.identity_token_ttl_seconds,
    )
    mirror = _create_mirror(active_settings)
    access_policy = AccessPolicy.from_settings(identity, active_settings)

    ledger = AuditChainLedger(document_store, mirror=mirror)
    ceremony = SignatureCeremony(
        ledger,
        active_settings.get_signing_key(),
        max_auth_age_seconds=active_settings.max_auth_age_seconds,
        ephemeral_key=active_settings.uses_ephemeral_signing_key(),
    )
    snapshot_store = SnapshotStore(
        blob_store,
        default_expiry_seconds=active_settings.snapshot_url_expiry_seconds,
    )
    history_ledger = HistoryLedger(document_store, strict=active_settings.history_strict)

    audit_service = AuditService(
        ledger=ledger,
        ceremony=ceremony,
        access=access_policy,
        verify_limit=active_settings.verify_limit,
        query_limit=active_settings.query_limit,
    )
    traceability_service = TraceabilityService(
        snapshots=snapshot_store,
        history_ledger=history_ledger,
        access=access_policy,
    )

    return ApplicationContainer(
        settings=active_settings,
        document_store=document_store,
        blob_store=blob_store,
        identity=identity,
        mirror=mirror,
        access_policy=access_policy,
        ledger=ledger,
        ceremony=ceremony,
        snapshot_store=snapshot_store,
        history_ledger=history_ledger,
        audit_service=audit_service,
        traceability_service=traceability_service,
    )

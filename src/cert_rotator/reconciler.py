from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from .patcher import Resource, ResourcePatcher
from .rotation import RotationEngine, RotationResult
from .store import ArtifactStore, load_bundle

_logger = logging.getLogger("cert_rotator.reconciler")


def service_dns_name(service_name: str, namespace: str) -> str:
    if not service_name or not namespace:
        raise ValueError("service_name and namespace are required.")
    return f"{service_name}.{namespace}.svc"


@dataclass(frozen=True)
class ReconcileResult:
    resource: Resource
    rotation: RotationResult | None = None

    @property
    def restart_requested(self) -> bool:
        return self.rotation is not None and self.rotation.restart_requested


class WebhookReconciler:
    """
    One reconciliation pass: rotate the stored certificates for the service
    fronting a webhook and publish the CA into the webhook's resource.

    Passes for the same store must be serialized by the caller.
    """

    def __init__(
        self,
        store: ArtifactStore,
        engine: RotationEngine,
        patcher: ResourcePatcher,
    ) -> None:
        self._store = store
        self._engine = engine
        self._patcher = patcher

    def reconcile(
        self,
        service_name: str,
        namespace: str,
        resource: Resource,
        now: datetime | None = None,
    ) -> ReconcileResult:
        info = self._patcher.info_for(resource)
        if info is None:
            _logger.debug("Resource is not a managed webhook; skipping.")
            return ReconcileResult(resource=resource)

        hostname = service_dns_name(service_name, namespace)
        # Shape errors surface here, before anything is rotated or saved.
        patched = self._patcher.with_service(resource, info, service_name, namespace)

        rotation = self._engine.rotate(load_bundle(self._store), hostname, now=now)
        if rotation.changed:
            self._store.save(rotation.bundle)
            _logger.info(
                "Stored rotated certificates for host=%s (outcome=%s)",
                hostname,
                rotation.outcome.value,
            )

        patched = self._patcher.with_ca_bundle(patched, info, rotation.bundle.ca_cert)
        return ReconcileResult(resource=patched, rotation=rotation)

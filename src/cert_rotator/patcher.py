from __future__ import annotations

import base64
import copy
import enum
import logging
from dataclasses import dataclass
from typing import Any, Iterable, MutableMapping

from .exceptions import FieldNotFoundError

Resource = MutableMapping[str, Any]

_logger = logging.getLogger("cert_rotator.patcher")


class WebhookType(enum.Enum):
    VALIDATING = "validating"
    MUTATING = "mutating"
    CRD_CONVERSION = "crd_conversion"
    API_SERVICE = "api_service"


@dataclass(frozen=True)
class WebhookInfo:
    """
    A resource that should trust the rotated CA.

    name is the resource's metadata.name: the webhook configuration name for
    validating and mutating webhooks, the CRD name for conversion webhooks.
    """

    name: str
    type: WebhookType


def crd_webhook_infos(crd_names: Iterable[str]) -> list[WebhookInfo]:
    return [WebhookInfo(name=name, type=WebhookType.CRD_CONVERSION) for name in crd_names]


def _nested_map(resource: Resource, *path: str) -> MutableMapping[str, Any] | None:
    current: Any = resource
    for key in path:
        if not isinstance(current, MutableMapping):
            return None
        current = current.get(key)
    if not isinstance(current, MutableMapping):
        return None
    return current


def client_configs(resource: Resource, info: WebhookInfo) -> list[MutableMapping[str, Any]]:
    """Return the mutable client configuration blocks of resource for info.type."""
    if info.type is WebhookType.CRD_CONVERSION:
        config = _nested_map(resource, "spec", "conversion", "webhook", "clientConfig")
        if config is None:
            raise FieldNotFoundError(
                "`conversion.webhook.clientConfig` field not found in CustomResourceDefinition "
                f"{info.name}"
            )
        return [config]

    if info.type is WebhookType.API_SERVICE:
        config = _nested_map(resource, "spec")
        if config is None:
            raise FieldNotFoundError(f"`spec` field not found in APIService {info.name}")
        return [config]

    webhooks = resource.get("webhooks")
    if not isinstance(webhooks, list) or not webhooks:
        raise FieldNotFoundError(f"`webhooks` field not found in {info.type.value} {info.name}")
    configs: list[MutableMapping[str, Any]] = []
    for index, webhook in enumerate(webhooks):
        config = _nested_map(webhook, "clientConfig") if isinstance(webhook, MutableMapping) else None
        if config is None:
            raise FieldNotFoundError(
                f"`webhooks[{index}].clientConfig` field not found in "
                f"{info.type.value} {info.name}"
            )
        configs.append(config)
    return configs


def inject_service(
    resource: Resource,
    info: WebhookInfo,
    service_name: str,
    namespace: str,
) -> None:
    for config in client_configs(resource, info):
        service = config.get("service")
        if not isinstance(service, MutableMapping):
            service = {}
            config["service"] = service
        service["name"] = service_name
        service["namespace"] = namespace


def inject_ca_bundle(resource: Resource, info: WebhookInfo, ca_cert_pem: bytes) -> None:
    encoded = base64.b64encode(ca_cert_pem).decode("ascii")
    for config in client_configs(resource, info):
        config["caBundle"] = encoded


class ResourcePatcher:
    """Applies service and CA bundle injection to copies of managed resources."""

    def __init__(self, webhooks: Iterable[WebhookInfo]) -> None:
        self._webhooks = {info.name: info for info in webhooks}

    def info_for(self, resource: Resource) -> WebhookInfo | None:
        metadata = resource.get("metadata")
        name = metadata.get("name") if isinstance(metadata, MutableMapping) else None
        if not isinstance(name, str):
            return None
        return self._webhooks.get(name)

    def with_service(
        self,
        resource: Resource,
        info: WebhookInfo,
        service_name: str,
        namespace: str,
    ) -> Resource:
        patched = copy.deepcopy(resource)
        inject_service(patched, info, service_name, namespace)
        return patched

    def with_ca_bundle(
        self,
        resource: Resource,
        info: WebhookInfo,
        ca_cert_pem: bytes,
    ) -> Resource:
        patched = copy.deepcopy(resource)
        inject_ca_bundle(patched, info, ca_cert_pem)
        _logger.debug("Injected CA bundle into %s %s", info.type.value, info.name)
        return patched

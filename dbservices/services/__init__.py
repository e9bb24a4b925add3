"""Service discovery, reconciliation and provisioning."""

from .provisioner import InitScript, ProvisioningRequest, ServiceProvisioner
from .reconciler import ServiceReconciler
from .service_registry import ServiceRegistry, TrackedService
from .services_manager import ServicesManager
from .state_publisher import WebSocketStatePublisher

__all__ = [
    "InitScript",
    "ProvisioningRequest",
    "ServiceProvisioner",
    "ServiceReconciler",
    "ServiceRegistry",
    "ServicesManager",
    "TrackedService",
    "WebSocketStatePublisher",
]

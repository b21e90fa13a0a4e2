from __future__ import annotations


class SPhotoError(Exception):
    """Base error for SPhoto automation."""


class ConfigError(SPhotoError):
    """Missing or invalid configuration for a provider."""


class InstanceNotFoundError(SPhotoError):
    """No instance directory or metadata exists for the id."""

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Instance not found: {instance_id}")
        self.instance_id = instance_id


class InstanceExistsError(SPhotoError):
    """An instance directory already exists for the id."""

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Instance already exists: {instance_id}")
        self.instance_id = instance_id


class SharedUserNotFoundError(SPhotoError):
    """No shared-tier user record exists for the id."""


class ContainerEngineError(SPhotoError):
    """Compose CLI invocation failed or timed out."""


class TenantAppError(SPhotoError):
    """Tenant photo application returned an error or was unreachable."""


class BillingProviderError(SPhotoError):
    """Billing provider SDK call failed."""


class WebhookSignatureError(SPhotoError):
    """Webhook payload failed signature verification."""


class EmailDeliveryError(SPhotoError):
    """Transactional email could not be handed to the provider."""


class MaintenanceNotFoundError(SPhotoError):
    """Maintenance window does not exist."""


class MaintenanceStateError(SPhotoError):
    """Requested maintenance transition is not allowed from the current status."""


class ExportNotFoundError(SPhotoError):
    """Export job or archive does not exist or has expired."""


class ValidationFailedError(SPhotoError):
    """User input failed a domain rule; message is user facing."""

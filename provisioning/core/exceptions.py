"""Provisioning errors."""

from __future__ import annotations

from typing import Optional


class ProvisioningError(Exception):
    """Base error for provisioning operations."""

    def __init__(self, message: str, error_code: str = "PROVISIONING_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class OrgNotFound(ProvisioningError):
    """Organization does not exist."""

    def __init__(self, message: str = "organization not found"):
        super().__init__(message, "ORG_NOT_FOUND")


class ConfigurationError(ProvisioningError):
    """Configuration cannot be honored."""

    def __init__(self, message: str = "invalid configuration"):
        super().__init__(message, "CONFIGURATION_ERROR")


class AutoAssignOrgNotFound(OrgNotFound, ConfigurationError):
    """The configured auto-assign organization is missing and cannot be bootstrapped."""

    def __init__(self, org_id: int):
        ProvisioningError.__init__(
            self,
            f"could not create user: organization ID {org_id} does not exist",
            "AUTO_ASSIGN_ORG_NOT_FOUND",
        )
        self.org_id = org_id


class UserAlreadyExists(ProvisioningError):
    def __init__(self, message: str = "user already exists"):
        super().__init__(message, "USER_ALREADY_EXISTS")


class UserNotFound(ProvisioningError):
    def __init__(self, message: str = "user not found"):
        super().__init__(message, "USER_NOT_FOUND")


class StorageError(ProvisioningError):
    """Failure reported by the database layer. The driver error is chained as __cause__."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message, "STORAGE_ERROR")
        self.original_error = original_error


class CredentialError(ProvisioningError):
    def __init__(self, message: str = "credential generation failed"):
        super().__init__(message, "CREDENTIAL_ERROR")

"""
NAS Agent error types.

Each error carries the HTTP status the API layer answers with, so routers
can let them propagate to the exception handler in main.py.
"""

from typing import Optional


class NASAgentError(Exception):
    """Base exception for NAS Agent operations"""
    
    status_code = 500
    
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(NASAgentError):
    """Missing or malformed request input"""
    status_code = 400


class AuthenticationError(NASAgentError):
    """Missing, expired or invalid credentials"""
    status_code = 401


class PermissionDeniedError(NASAgentError):
    """Requester is authenticated but not allowed to do this"""
    status_code = 403


class NotFoundError(NASAgentError):
    """Requested record or dataset does not exist"""
    status_code = 404


class ConflictError(NASAgentError):
    """Record already exists (share, permission, user email or IP)"""
    status_code = 409


class GatewayError(NASAgentError):
    """A zfs/zpool command could not be run, timed out or exited non-zero"""
    
    def __init__(self, message: str, command: Optional[str] = None, exit_code: Optional[int] = None):
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code


class ShareOutOfSyncError(GatewayError):
    """
    The database change was committed but republishing the share failed.
    
    The published sharenfs policy no longer matches the stored permissions
    until the share is reconciled again.
    """
    
    status_code = 502
    
    def __init__(self, dataset: str, cause: GatewayError):
        message = (
            f"Permissions for '{dataset}' were saved but the NFS share could not be "
            f"republished: {cause.message}"
        )
        super().__init__(message, command=cause.command, exit_code=cause.exit_code)
        self.dataset = dataset
        self.cause = cause


class OwnershipError(NASAgentError):
    """chown on a dataset mount path failed after a successful publish"""
    
    def __init__(self, path: str, message: str):
        super().__init__(f"Failed to set ownership on {path}: {message}")
        self.path = path

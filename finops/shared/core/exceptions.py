import re
from typing import Optional, Dict, Any


class FinOpsException(Exception):
    """Base exception for all FinOps engine errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class AdapterError(FinOpsException):
    """
    Raised when an external Google Cloud collaborator call fails.
    Error messages are sanitized so raw tokens and request ids never leak into results.
    """
    def __init__(self, message: str, code: str = "adapter_error", details: Optional[Dict[str, Any]] = None):
        sanitized_message = self._sanitize(message)
        super().__init__(sanitized_message, code=code, details=details)

    def _sanitize(self, msg: str) -> str:
        """Remove bearer tokens, request IDs and credential fragments from error messages."""
        msg = re.sub(r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', '[REDACTED_ID]', msg, flags=re.IGNORECASE)
        msg = re.sub(r'(?i)(access_token|refresh_token|token|key|signature)=[^&\s]+', r'\1=[REDACTED]', msg)
        msg = re.sub(r'(?i)bearer\s+[a-z0-9._\-]+', 'Bearer [REDACTED]', msg)
        if "PERMISSION_DENIED" in msg or "403" in msg.split(" ", 1)[0]:
            return "Permission denied: the delegated credentials lack read access to this resource."
        return msg


class AuthError(FinOpsException):
    """Raised when the delegated credentials are rejected."""
    def __init__(self, message: str, code: str = "auth_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class ConfigurationError(FinOpsException):
    """Raised when engine configuration is invalid or missing."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class EnumerationError(FinOpsException):
    """
    Raised when accounts or projects cannot be listed.
    Aborts the whole run: nothing can be attributed without account identity.
    """
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="enumeration_failed", details=details)


class TableResolutionError(FinOpsException):
    """Raised when no candidate billing export table answers for a billing account."""
    def __init__(self, billing_account_id: str, candidates: list[str]):
        super().__init__(
            f"no billing export table found (tried {len(candidates)} candidates)",
            code="table_resolution_failed",
            details={"billing_account_id": billing_account_id, "candidates": candidates}
        )

"""
Custom Exceptions for VBS
=========================

Fatal errors derive from VBSError and are caught exactly once, in
``vbs.main``. Phase-local failures (install, build, launch, nginx,
tests, persistence) are never raised past their phase; they are
recorded as warnings on the run context instead.

Usage:
    from vbs.exceptions import ProjectNotFoundError

    if record is None:
        raise ProjectNotFoundError(name)
"""

from typing import Optional, Any, Dict


class VBSError(Exception):
    """Base exception for all VBS errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Configuration Errors
# ============================================

class MissingCredentialError(VBSError):
    """Provider credential is not configured"""

    def __init__(self, variable: str = "ANTHROPIC_API_KEY"):
        super().__init__(
            f"{variable} is not set. Add it to your environment or a .env file.",
            code="MISSING_CREDENTIAL",
            details={"variable": variable}
        )


# ============================================
# LLM Errors
# ============================================

class LLMError(VBSError):
    """Provider call failed"""

    def __init__(self, message: str, model: Optional[str] = None, code: str = "LLM_ERROR"):
        super().__init__(message, code=code, details={"model": model})


class LLMTimeoutError(LLMError):
    """Provider did not answer within the per-model bound"""

    def __init__(self, model: str, timeout: float):
        super().__init__(
            f"No response from {model} within {timeout:.0f}s. "
            f"Try a faster model (AI_MODEL_OPUS / AI_MODEL_HAIKU) or simplify the request.",
            model=model,
            code="LLM_NO_RESPONSE"
        )
        self.details["timeout"] = timeout


class LLMResponseError(LLMError):
    """Provider returned an unusable response"""

    def __init__(self, message: str, model: Optional[str] = None):
        super().__init__(message, model=model, code="LLM_EMPTY_RESPONSE")


class JSONExtractionError(VBSError):
    """Model output could not be turned into JSON, even after repair"""

    def __init__(self, raw_text: str, reason: str = ""):
        snippet = (raw_text or "")[:300]
        message = "Could not parse JSON from model output"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            code="JSON_PARSE_FAILED",
            details={"raw_snippet": snippet, "reason": reason}
        )
        self.raw_snippet = snippet


class SchemaValidationError(VBSError):
    """Parsed JSON does not match the expected structure"""

    def __init__(self, schema: str, errors: Any = None):
        super().__init__(
            f"{schema} response does not match the expected structure",
            code="SCHEMA_VIOLATION",
            details={"schema": schema, "errors": errors}
        )


# ============================================
# Project Errors
# ============================================

class ProjectNotFoundError(VBSError):
    """Project is not registered and no project directory matches"""

    def __init__(self, name: str, reason: str = "not found"):
        super().__init__(
            f"Project '{name}' {reason}",
            code="PROJECT_NOT_FOUND",
            details={"name": name}
        )


class ProjectConfigError(VBSError):
    """config.vbs is missing or unreadable"""

    def __init__(self, path: str, reason: str = "missing or unreadable"):
        super().__init__(
            f"Project configuration {path} is {reason}",
            code="PROJECT_CONFIG_INVALID",
            details={"path": path}
        )


class UnsafePathError(VBSError):
    """Generated file path escapes the project root"""

    def __init__(self, path: str):
        super().__init__(
            f"Refusing to write outside the project root: {path}",
            code="UNSAFE_PATH",
            details={"path": path}
        )

"""
Error taxonomy.

Engine-level errors are raised by `RenderEngine`; the tile service converts
them into service-level errors, which carry the HTTP status the boundary
should answer with.
"""
from __future__ import annotations


class StyleError(ValueError):
    """Style document is malformed or references something that cannot be loaded."""


# -------------------------
# Engine
# -------------------------
class EngineError(Exception):
    """Base class for rendering engine failures."""


class EngineNotLoaded(EngineError):
    """Render attempted before the engine reached READY."""


class InitializationFailed(EngineNotLoaded):
    """Style/engine load failed; the engine stays LOAD_FAILED until restarted."""


class RenderFailed(EngineError):
    """Rasterization of an extent failed."""


class EncodeFailed(EngineError):
    """Encoding the rasterized image failed."""


# -------------------------
# Service
# -------------------------
class ServiceError(Exception):
    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None, detail: str | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.detail = detail


class BadRequest(ServiceError):
    status_code = 400
    public_message = "Bad request"


class ServiceUnavailable(ServiceError):
    status_code = 503
    public_message = "Tile renderer is not ready"


class InternalError(ServiceError):
    status_code = 500
    public_message = "Tile rendering failed"

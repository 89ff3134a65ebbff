"""
API Module - Black Box Interface

Purpose: Shared data models for dispatch payloads and HTTP responses
Interface: Pydantic models
"""

from .models import DEFAULT_LONGEST_SIDE, HealthResponse, MicroserviceDetails, ThumbnailCtx

__all__ = ["DEFAULT_LONGEST_SIDE", "HealthResponse", "MicroserviceDetails", "ThumbnailCtx"]

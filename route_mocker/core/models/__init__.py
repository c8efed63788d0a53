"""Data models for intercepted HTTP exchanges."""

from .http import AbortReason, CapturedRequest, Headers, ResponseDescriptor

__all__ = ["AbortReason", "CapturedRequest", "Headers", "ResponseDescriptor"]

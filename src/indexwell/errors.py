# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Exception classes.

Provider errors are transient (the queue retries the item), content errors
are permanent, config errors are rejected at write time.
"""
from typing import Any, Optional


class IndexwellError(Exception):
    """Base exception for Indexwell"""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ProviderError(IndexwellError):
    """Embedding provider or quality judge call failed"""

    def __init__(self, message: str, provider: str = "", details: Optional[dict[str, Any]] = None):
        self.provider = provider
        super().__init__(message, details=details)


class ContentNotFoundError(IndexwellError):
    """Content item is gone or not eligible for indexing"""

    def __init__(self, content_type: str, content_id: str):
        super().__init__(
            "Content not found or not eligible",
            details={"content_type": content_type, "content_id": content_id},
        )


class ConfigValidationError(IndexwellError):
    """Chunking / quality gate configuration rejected"""

    def __init__(self, message: str, errors: Optional[list[dict]] = None):
        self.errors = errors or []
        super().__init__(message, details={"errors": self.errors})

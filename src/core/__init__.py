"""
Core Module - Shared infrastructure for cross-cutting concerns.

This module provides:
- The service registry used to construct and tear down services
"""

from .service_registry import ServiceRegistry, services

__all__ = [
    "ServiceRegistry",
    "services",
]

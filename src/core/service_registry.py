"""
Service Registry: explicit service lifecycle.

Services are constructed at application startup, registered by name, and
torn down at shutdown in reverse order. Nothing is created implicitly at
import time.

Usage:
    from core.service_registry import services

    # Startup
    services.register("notifications", service, shutdown=service.shutdown)

    # Retrieve
    notifications = services.require("notifications")

    # Shutdown / test isolation
    await services.shutdown_all()
    services.reset_all()
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

ShutdownHook = Callable[[], Union[None, Awaitable[None]]]


class ServiceRegistry:
    """Named service container."""

    def __init__(self):
        self._services: Dict[str, Any] = {}
        self._shutdown_hooks: List[Tuple[str, ShutdownHook]] = []

    def register(self, name: str, instance: Any, shutdown: Optional[ShutdownHook] = None) -> None:
        """
        Register a service instance.

        Args:
            name: Service identifier (e.g., "notifications")
            instance: The service instance
            shutdown: Optional hook run by ``shutdown_all()``
        """
        self._services[name] = instance
        if shutdown is not None:
            self._shutdown_hooks.append((name, shutdown))
        logger.debug(f"Service registered: {name}")

    def get(self, name: str, default: Any = None) -> Any:
        """Retrieve a registered service, or ``default``."""
        return self._services.get(name, default)

    def require(self, name: str) -> Any:
        """Like ``get`` but raises ``KeyError`` for unknown services."""
        instance = self.get(name)
        if instance is None:
            raise KeyError(f"Service not registered: {name}")
        return instance

    async def shutdown_all(self) -> None:
        """Run shutdown hooks in reverse registration order."""
        hooks = list(reversed(self._shutdown_hooks))
        self._shutdown_hooks.clear()
        for name, hook in hooks:
            try:
                result = hook()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Shutdown of {name} failed: {e}")
            else:
                logger.debug(f"Service shut down: {name}")

    def reset_all(self) -> None:
        """Drop all instances and hooks. Useful for test isolation."""
        self._services.clear()
        self._shutdown_hooks.clear()
        logger.debug("All services reset")


# Process-wide registry; populated only by application startup.
services = ServiceRegistry()

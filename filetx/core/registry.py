# filetx/core/registry.py
"""
Service registry for shared filetx components.

The registry holds the default backup store and transaction manager built
from configuration. Components never reach into it themselves; they take
their collaborators as constructor arguments, and only the api module and
the CLI look services up here.
"""
import threading
from typing import Any, Callable, Dict, List, Optional, TypeVar

from filetx.utils.logging import get_logger

T = TypeVar("T")


class ServiceRegistry:
    """
    Thread-safe registry of named services.

    Supports explicit registration, lazily-invoked factories and
    get-or-create access.
    """

    _instance: Optional["ServiceRegistry"] = None
    _instance_lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> "ServiceRegistry":
        """Get the singleton instance of the registry."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = ServiceRegistry()
        return cls._instance

    def __init__(self):
        self._services: Dict[str, Any] = {}
        self._factories: Dict[str, Callable[[], Any]] = {}
        self._lock = threading.RLock()
        self._logger = get_logger(__name__)

    def register(self, name: str, service: T) -> T:
        """
        Register a service, replacing any previous one with the same name.

        Returns:
            The registered service (for method chaining)
        """
        with self._lock:
            self._services[name] = service
        self._logger.debug(f"Registered service: {name} ({type(service).__name__})")
        return service

    def register_factory(self, name: str, factory: Callable[[], Any]) -> None:
        """Register a factory that builds the service on first access."""
        with self._lock:
            self._factories[name] = factory
        self._logger.debug(f"Registered factory for: {name}")

    def get(self, name: str) -> Optional[Any]:
        """
        Get a service, building it from its factory if needed.

        Returns:
            The service instance or None if nothing is registered under ``name``
        """
        with self._lock:
            if name in self._services:
                return self._services[name]
            factory = self._factories.get(name)
            if factory is None:
                return None
            self._logger.debug(f"Creating service via factory: {name}")
            return self.register(name, factory())

    def get_or_create(self, name: str, factory: Callable[[], T]) -> T:
        """Get a service or build and register it with ``factory``."""
        with self._lock:
            service = self.get(name)
            if service is None:
                self._logger.debug(f"Creating service: {name}")
                service = self.register(name, factory())
            return service

    def list_services(self) -> List[str]:
        with self._lock:
            return sorted(self._services)

    def clear(self) -> None:
        """Forget all services and factories."""
        with self._lock:
            self._services.clear()
            self._factories.clear()
        self._logger.debug("Cleared service registry")


# Create global registry instance
registry = ServiceRegistry.get_instance()

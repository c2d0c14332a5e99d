"""Backend auto-registration."""

from typing import Callable, Optional

from ..config import Settings
from ..errors import fatal
from .base import Backend

BackendFactory = Callable[[Settings], Backend]

_registry: dict[str, BackendFactory] = {}


def register_backend(name: str, factory: BackendFactory) -> None:
    _registry[name] = factory


def get_backend_factory(name: str) -> Optional[BackendFactory]:
    return _registry.get(name)


def available_backends() -> list[str]:
    return sorted(_registry)


def create_backend(settings: Settings) -> Backend:
    factory = _registry.get(settings.backend)
    if factory is None:
        raise fatal(
            f"Unknown backend '{settings.backend}'. Available: {', '.join(available_backends()) or 'none'}"
        )
    return factory(settings)

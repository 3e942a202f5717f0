"""Out-of-hours booking - slot hold and payment confirmation for OOH appointments."""

import importlib as _importlib
from typing import TYPE_CHECKING, Any

__version__ = "1.0.0"

if TYPE_CHECKING:
    from .core.config.settings import BookingSettings as BookingSettings
    from .core.config.settings import get_settings as get_settings
    from .core.logger import setup_structured_logging as setup_structured_logging
    from .gateway.client import WorkflowGatewayClient as WorkflowGatewayClient
    from .services.booking.booking_orchestrator import BookingOrchestrator as BookingOrchestrator
    from .services.booking.payment import PaymentProcessor as PaymentProcessor

# Explicit lazy-loading map: name -> (module_path, attribute_name)
_LAZY_MODULE_MAP = {
    # Core
    "BookingSettings": ("ooh_booking.core.config.settings", "BookingSettings"),
    "get_settings": ("ooh_booking.core.config.settings", "get_settings"),
    "setup_structured_logging": ("ooh_booking.core.logger", "setup_structured_logging"),
    # Gateway
    "WorkflowGatewayClient": ("ooh_booking.gateway.client", "WorkflowGatewayClient"),
    # Services
    "BookingOrchestrator": (
        "ooh_booking.services.booking.booking_orchestrator",
        "BookingOrchestrator",
    ),
    "PaymentProcessor": ("ooh_booking.services.booking.payment", "PaymentProcessor"),
}

# Auto-derive __all__ from _LAZY_MODULE_MAP to prevent manual sync issues
__all__ = list(_LAZY_MODULE_MAP.keys())


def __getattr__(name: str) -> Any:
    """Lazy import with explicit mapping - importlib based."""
    if name in _LAZY_MODULE_MAP:
        module_path, attr_name = _LAZY_MODULE_MAP[name]
        module = _importlib.import_module(module_path)
        attr = getattr(module, attr_name)
        # Cache in module globals to avoid repeated imports
        globals()[name] = attr
        return attr
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

from __future__ import annotations

from .enums import OrderStatus
from .events import OrderEvent, OrderEventHandler

__all__ = ["OrderEvent", "OrderEventHandler", "OrderStatus"]

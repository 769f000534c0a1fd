"""Composition root: wires kernel services over the inventory and quota stores."""

from pantry_services.kernel import InventoryAlerts, PantryKernel

__all__ = ["InventoryAlerts", "PantryKernel"]

"""Dockhand provisioning toolkit."""

from .inventory import InventoryLoader
from .plan import PlanBuilder
from .runner import PlaybookRunner

__all__ = ["InventoryLoader", "PlanBuilder", "PlaybookRunner"]

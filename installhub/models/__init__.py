# installhub/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .importer import ImportProfile, ImportRunStatus, ImportSourceType, PartnerImportRun
from .order import Order, OrderStatusEnhanced
from .partner import Client, Engineer, Partner

__all__ = [
    "db",
    "BaseModel",
    "Partner",
    "Engineer",
    "Client",
    "Order",
    "OrderStatusEnhanced",
    # Importer models
    "ImportProfile",
    "ImportRunStatus",
    "ImportSourceType",
    "PartnerImportRun",
]

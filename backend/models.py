"""Import every ORM model so the mapper registry and ``Base.metadata`` are complete."""

from backend.catalog.models import Product, ProductCategory, Subcategory
from backend.common.audit import AuditTrail
from backend.core.models import Company, Employee
from backend.eligibility.models import DesignationEligibilityRule, EligibilityLedgerEntry
from backend.orders.models import Order, OrderItem, ReturnRequest

__all__ = [
    "AuditTrail",
    "Company",
    "DesignationEligibilityRule",
    "EligibilityLedgerEntry",
    "Employee",
    "Order",
    "OrderItem",
    "Product",
    "ProductCategory",
    "ReturnRequest",
    "Subcategory",
]

"""Core module — Company and Employee models."""

from backend.core.models import Company, Employee

__all__ = ["Company", "Employee"]

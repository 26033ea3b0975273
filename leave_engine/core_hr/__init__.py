"""Core HR module — Department, Role, Employee models and the directory snapshot."""

from leave_engine.core_hr.models import Department, Employee, Role

__all__ = ["Employee", "Department", "Role"]

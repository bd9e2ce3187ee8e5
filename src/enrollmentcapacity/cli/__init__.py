"""CLI module for enrollmentcapacity."""

from .commands import (
    BulkCommand,
    ClassCommands,
    DatabaseCommands,
    DropCommand,
    PlanCommand,
    RequestCommands,
    SweepCommand,
    WaitlistCommands,
)
from .utils import Services, build_services

__all__ = [
    "BulkCommand",
    "ClassCommands",
    "DatabaseCommands",
    "DropCommand",
    "PlanCommand",
    "RequestCommands",
    "Services",
    "SweepCommand",
    "WaitlistCommands",
    "build_services",
]

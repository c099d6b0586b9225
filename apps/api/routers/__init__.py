"""Routers package."""

from . import (
    health,
    billing,
    artifacts,
)

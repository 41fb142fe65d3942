"""Multi-tenant access-control core for radiology workflow backends."""

__version__ = "0.3.0"

"""Export and import backends."""

from data_portability.backends.base import ExportBackend, ImportBackend
from data_portability.backends.memory import InMemoryPortabilityBackend

__all__ = ["ExportBackend", "ImportBackend", "InMemoryPortabilityBackend"]

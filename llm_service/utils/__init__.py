"""Concurrency helpers."""

from .single_flight import SingleFlight
from .threads import iterate_in_thread

__all__ = [
    "SingleFlight",
    "iterate_in_thread",
]

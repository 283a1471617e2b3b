from __future__ import annotations

import threading
from typing import Protocol
from uuid import uuid4


class IdProvider(Protocol):
    def new_id(self) -> str: ...


class UUIDProvider:
    def new_id(self) -> str:
        return uuid4().hex


class OrderNumberGenerator(Protocol):
    def next_number(self) -> str: ...


def format_order_number(prefix: str, value: int) -> str:
    return f"{prefix}-{value:06d}"


class InMemoryOrderNumberGenerator:
    def __init__(self, prefix: str = "ORD", start: int = 1) -> None:
        self._prefix = prefix
        self._next = start
        self._lock = threading.Lock()

    def next_number(self) -> str:
        with self._lock:
            value = self._next
            self._next += 1
        return format_order_number(self._prefix, value)

from collections.abc import Callable
from typing import Protocol


class AttendeeCountCache(Protocol):
    ttl_seconds: float

    def get(self, instance_id: str) -> tuple[int | None, bool]: ...

    def put(self, instance_id: str, count: int, generation: int | None = None) -> bool: ...

    def invalidate(self, instance_id: str) -> None: ...

    def generation(self, instance_id: str) -> int: ...

    def get_or_load(self, instance_id: str, loader: Callable[[str], int]) -> int: ...

import time
from dataclasses import dataclass
from typing import Any, Dict


def now_ms() -> int:
    """Current time in milliseconds (the unit every vote timestamp uses)."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Vote:
    """A vote received from a voting site, after protocol validation."""

    service_name: str
    username: str
    address: str
    timestamp: int

    def __post_init__(self) -> None:
        if self.service_name is None or not str(self.service_name).strip():
            raise ValueError("serviceName cannot be null or empty")
        if self.username is None or not str(self.username).strip():
            raise ValueError("username cannot be null or empty")
        if self.address is None:
            # frozen: go around __setattr__ for the one normalisation we do
            object.__setattr__(self, "address", "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "serviceName": self.service_name,
            "username": self.username,
            "address": self.address,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        return (
            f"Vote(service={self.service_name}, user={self.username}, "
            f"addr={self.address}, time={self.timestamp})"
        )

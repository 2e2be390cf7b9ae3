from types import MappingProxyType
from typing import Mapping, Optional


class ServiceTokenTable:
    """
    Read-only service name → shared secret map used by V2.

    Keys are lowercased once at construction, so lookups are
    case-insensitive and the table is safe to share between connections.
    """

    def __init__(self, tokens: Optional[Mapping[str, str]] = None) -> None:
        normalized = {str(k).lower(): v for k, v in (tokens or {}).items()}
        self._tokens = MappingProxyType(normalized)

    def get_token(self, service_name: Optional[str]) -> Optional[str]:
        if service_name is None:
            return None
        return self._tokens.get(service_name.lower())

    @property
    def v2_enabled(self) -> bool:
        return bool(self._tokens)

    def services(self):
        return sorted(self._tokens)

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, service_name: object) -> bool:
        return isinstance(service_name, str) and service_name.lower() in self._tokens

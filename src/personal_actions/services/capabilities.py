"""Capability evaluators.

Permission storage lives outside the engine; these evaluators only answer
yes/no for a capability code.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

# Holders may see raw salary figures in calculation formulas
SENSITIVE_SALARY_CAPABILITY = "employee:view-sensitive"


def _normalize(code: str) -> str:
    return code.strip().lower()


class StaticCapabilityEvaluator:
    """In-memory grants keyed by actor id."""

    def __init__(self, grants: Mapping[int | None, Iterable[str]] | None = None):
        self._grants: dict[int | None, set[str]] = {}
        for actor_id, codes in (grants or {}).items():
            self.grant(actor_id, *codes)

    def grant(self, actor_id: int | None, *codes: str) -> None:
        self._grants.setdefault(actor_id, set()).update(
            _normalize(c) for c in codes if c and c.strip()
        )

    def revoke(self, actor_id: int | None, *codes: str) -> None:
        self._grants.get(actor_id, set()).difference_update(_normalize(c) for c in codes)

    def has_capability(self, actor_id: int | None, capability_code: str) -> bool:
        return _normalize(capability_code) in self._grants.get(actor_id, set())


class GrantedCapabilities(StaticCapabilityEvaluator):
    """Capabilities already resolved for the single actor of a request."""

    def __init__(self, actor_id: int | None, codes: Iterable[str]):
        super().__init__({actor_id: codes})
        self.actor_id = actor_id

    @classmethod
    def from_header(cls, actor_id: int | None, header_value: str | None) -> GrantedCapabilities:
        """Parse a comma-separated capability list."""
        codes = [part for part in (header_value or "").split(",") if part.strip()]
        return cls(actor_id, codes)

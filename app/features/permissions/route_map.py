"""
Declarative mapping from HTTP method + path to required permissions.

Matching rules:
- the method must match exactly (case-insensitive);
- a pattern segment ``:name`` matches exactly one non-empty path segment,
  every other segment must match literally;
- the FIRST matching rule in declaration order wins. This is not best-match:
  declare more specific rules before overlapping general ones.

A request matching no rule is not protected by this map at all (the
enforcement dependency lets it through). The map is additive protection for
known-sensitive routes, not a default-deny firewall; handlers outside it must
protect themselves.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from app.features.permissions.catalog import PermissionKey


class Policy(str, Enum):
    ANY = "ANY"
    ALL = "ALL"


@dataclass(frozen=True)
class RouteRule:
    method: str
    path_pattern: str
    required_keys: tuple[PermissionKey, ...]
    policy: Policy = Policy.ANY
    _segments: tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.required_keys:
            raise ValueError(f"Route rule {self.method} {self.path_pattern} requires no permission")
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "required_keys", tuple(PermissionKey(k) for k in self.required_keys))
        object.__setattr__(self, "_segments", _split(self.path_pattern))

    def matches(self, method: str, path: str) -> bool:
        if method.upper() != self.method:
            return False
        segments = _split(path)
        if len(segments) != len(self._segments):
            return False
        for pattern, actual in zip(self._segments, segments):
            if pattern.startswith(":"):
                if not actual:
                    return False
            elif pattern != actual:
                return False
        return True


def _split(path: str) -> tuple[str, ...]:
    return tuple(path.strip("/").split("/")) if path.strip("/") else ()


class RouteMap:
    """Ordered, immutable collection of route rules."""

    def __init__(self, rules: Iterable[RouteRule]):
        self._rules: tuple[RouteRule, ...] = tuple(rules)

    @property
    def rules(self) -> tuple[RouteRule, ...]:
        return self._rules

    def required_keys_for(self, method: str, path: str) -> Optional[RouteRule]:
        """Return the first rule matching the request, or None."""
        for rule in self._rules:
            if rule.matches(method, path):
                return rule
        return None

    def __len__(self) -> int:
        return len(self._rules)


P = PermissionKey

ROUTE_RULES: tuple[RouteRule, ...] = (
    # IPR filing
    RouteRule("POST", "/api/v1/ipr/create", (P.IPR_FILE_NEW,)),
    RouteRule("GET", "/api/v1/ipr/my-applications", (P.IPR_FILE_NEW,)),

    # DRD review (DRD member)
    RouteRule("GET", "/api/v1/drd-review/pending", (P.IPR_REVIEW, P.IPR_APPROVE)),
    RouteRule("POST", "/api/v1/drd-review/review/:id", (P.IPR_REVIEW,)),
    RouteRule("POST", "/api/v1/drd-review/recommend/:id", (P.IPR_REVIEW,)),

    # DRD head approval
    RouteRule("POST", "/api/v1/drd-review/head-approve/:id", (P.IPR_APPROVE,)),
    RouteRule("POST", "/api/v1/drd-review/govt-application/:id", (P.IPR_APPROVE,)),
    RouteRule("POST", "/api/v1/drd-review/publication/:id", (P.IPR_APPROVE,)),

    # School assignment (DRD head)
    RouteRule("POST", "/api/v1/drd-member/assign-schools", (P.IPR_ASSIGN_SCHOOL,)),
    RouteRule("PUT", "/api/v1/drd-member/assign-schools/:userId", (P.IPR_ASSIGN_SCHOOL,)),

    # Research contributions
    RouteRule("POST", "/api/v1/research/create", (P.RESEARCH_FILE_NEW,)),
    RouteRule("GET", "/api/v1/research/my-contributions", (P.RESEARCH_FILE_NEW,)),
    RouteRule("GET", "/api/v1/research-review/pending", (P.RESEARCH_REVIEW, P.RESEARCH_APPROVE)),
    RouteRule("POST", "/api/v1/research-review/review/:id", (P.RESEARCH_REVIEW,)),
    RouteRule("POST", "/api/v1/research-review/approve/:id", (P.RESEARCH_APPROVE,)),
    # Crediting an incentive needs final approval rights in both domains
    RouteRule(
        "POST", "/api/v1/research-review/incentive/:id",
        (P.RESEARCH_APPROVE, P.IPR_APPROVE), Policy.ALL,
    ),
)

DEFAULT_ROUTE_MAP = RouteMap(ROUTE_RULES)

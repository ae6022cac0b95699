"""
Static permission catalog and role defaults.

The catalog is deploy-time configuration: it is built once at import and
exposed only through immutable structures, so request handlers can read it
concurrently without synchronisation. There is no runtime mutation path.
"""
from collections.abc import Collection, Iterable
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from app.core.errors import InvalidArgument
from app.features.users.models import Role


CATALOG_VERSION = "2"


class PermissionKey(str, Enum):
    """Closed set of grantable permission keys."""
    IPR_FILE_NEW = "ipr_file_new"
    IPR_REVIEW = "ipr_review"
    IPR_APPROVE = "ipr_approve"
    IPR_ASSIGN_SCHOOL = "ipr_assign_school"
    RESEARCH_FILE_NEW = "research_file_new"
    RESEARCH_REVIEW = "research_review"
    RESEARCH_APPROVE = "research_approve"


@dataclass(frozen=True)
class ModuleDefinition:
    slug: str
    name: str
    display_order: int
    description: str = ""


@dataclass(frozen=True)
class PermissionDefinition:
    key: PermissionKey
    category: str
    label: str
    description: str
    module: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key.value,
            "category": self.category,
            "label": self.label,
            "description": self.description,
            "module": self.module,
        }


@dataclass(frozen=True)
class PermissionCategory:
    group_key: str
    category: str
    module: str
    permissions: tuple[PermissionDefinition, ...]


def _category(group_key: str, category: str, module: str, *entries: tuple[PermissionKey, str, str]) -> PermissionCategory:
    return PermissionCategory(
        group_key=group_key,
        category=category,
        module=module,
        permissions=tuple(
            PermissionDefinition(key=key, category=category, label=label, description=description, module=module)
            for key, label, description in entries
        ),
    )


# ============================================================================
# Declarations (order is the presentation order)
# ============================================================================

MODULES: tuple[ModuleDefinition, ...] = (
    ModuleDefinition("ipr", "IPR", 1, "Intellectual property filing, DRD review and approval"),
    ModuleDefinition("research", "Research", 2, "Research contribution filing and review"),
)

CATEGORIES: tuple[PermissionCategory, ...] = (
    _category(
        "IPR_CORE", "IPR Permissions", "ipr",
        (PermissionKey.IPR_FILE_NEW, "IPR Filing",
         "Can file new IPR applications (Faculty/Student have this by default)"),
        (PermissionKey.IPR_REVIEW, "IPR Review",
         "DRD Member - Can review IPR applications from assigned schools"),
        (PermissionKey.IPR_APPROVE, "IPR Approve",
         "DRD Head - Can give final approval/rejection on IPR applications"),
        (PermissionKey.IPR_ASSIGN_SCHOOL, "Assign Schools to DRD Members",
         "DRD Head - Can assign schools to DRD member reviewers"),
    ),
    _category(
        "RESEARCH_CORE", "Research Permissions", "research",
        (PermissionKey.RESEARCH_FILE_NEW, "Research Filing",
         "Can submit research contributions (Faculty/Student have this by default)"),
        (PermissionKey.RESEARCH_REVIEW, "Research Review",
         "Can review research contributions and recommend a decision"),
        (PermissionKey.RESEARCH_APPROVE, "Research Approve",
         "Can give final approval/rejection on research contributions"),
    ),
)


def _build_index() -> Mapping[PermissionKey, PermissionDefinition]:
    index: Dict[PermissionKey, PermissionDefinition] = {}
    module_slugs = {module.slug for module in MODULES}
    for group in CATEGORIES:
        if group.module not in module_slugs:
            raise RuntimeError(f"Category {group.group_key} references unknown module {group.module!r}")
        for definition in group.permissions:
            if definition.key in index:
                raise RuntimeError(f"Permission {definition.key.value} declared twice")
            index[definition.key] = definition
    missing = set(PermissionKey) - set(index)
    if missing:
        raise RuntimeError(f"Permissions without definition: {sorted(k.value for k in missing)}")
    return MappingProxyType(index)


DEFINITIONS: Mapping[PermissionKey, PermissionDefinition] = _build_index()
ALL_PERMISSION_KEYS: frozenset[str] = frozenset(key.value for key in DEFINITIONS)


# ============================================================================
# Lookups
# ============================================================================

def is_valid_key(key: Any) -> bool:
    """Membership test against every key of every category and module."""
    if isinstance(key, PermissionKey):
        return True
    return isinstance(key, str) and key in ALL_PERMISSION_KEYS


def parse_keys(raw: Any) -> frozenset[PermissionKey]:
    """
    Validate a batch of permission keys, all or nothing.

    Raises:
        InvalidArgument: if ``raw`` is not a collection of strings, or if any
            key is unknown. Every unknown key is reported at once.
    """
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Iterable):
        raise InvalidArgument("Permission keys must be provided as a list")
    items = list(raw)
    not_strings = [item for item in items if not isinstance(item, str)]
    if not_strings:
        raise InvalidArgument("Permission keys must be strings")
    unknown = sorted({item for item in items if not is_valid_key(item)})
    if unknown:
        raise InvalidArgument(
            "Unknown permission keys",
            details={"unknown_keys": unknown},
        )
    return frozenset(PermissionKey(item) for item in items)


def get_definition(key: PermissionKey | str) -> PermissionDefinition:
    return DEFINITIONS[PermissionKey(key)]


def keys_for_module(slug: str) -> tuple[PermissionKey, ...]:
    return tuple(
        definition.key
        for group in CATEGORIES
        if group.module == slug
        for definition in group.permissions
    )


def list_for_presentation(active_modules: Optional[Collection[str]] = None) -> List[Dict[str, Any]]:
    """
    Catalog grouped by category for the admin UI.

    Categories appear in declaration order, keys in declaration order within
    their category. ``active_modules`` optionally hides categories whose
    module has been deactivated.
    """
    return [
        {
            "group_key": group.group_key,
            "category": group.category,
            "module": group.module,
            "permissions": [definition.as_dict() for definition in group.permissions],
        }
        for group in CATEGORIES
        if active_modules is None or group.module in active_modules
    ]


# ============================================================================
# Role defaults
# ============================================================================

# Faculty and students file IPR and research contributions as an inherent
# right. Staff need an explicit grant. Admin manages identities and
# permissions and holds no operational permission unless explicitly granted.
_ROLE_DEFAULTS: Mapping[Role, frozenset[PermissionKey]] = MappingProxyType({
    Role.STUDENT: frozenset({PermissionKey.IPR_FILE_NEW, PermissionKey.RESEARCH_FILE_NEW}),
    Role.FACULTY: frozenset({PermissionKey.IPR_FILE_NEW, PermissionKey.RESEARCH_FILE_NEW}),
    Role.STAFF: frozenset(),
    Role.ADMIN: frozenset(),
})


def defaults_for(role: Role | str) -> frozenset[PermissionKey]:
    """Permissions implicitly held by every identity of ``role``."""
    try:
        return _ROLE_DEFAULTS[Role(role)]
    except ValueError:
        return frozenset()

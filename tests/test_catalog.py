"""
Permission catalog and role defaults.
"""
import pytest

from app.core.errors import InvalidArgument
from app.features.permissions.catalog import (
    ALL_PERMISSION_KEYS,
    CATEGORIES,
    MODULES,
    PermissionKey,
    defaults_for,
    get_definition,
    is_valid_key,
    keys_for_module,
    list_for_presentation,
    parse_keys,
)
from app.features.users.models import Role


FILING_KEYS = {PermissionKey.IPR_FILE_NEW, PermissionKey.RESEARCH_FILE_NEW}


class TestCatalogLookup:

    def test_every_enum_member_is_defined(self):
        assert ALL_PERMISSION_KEYS == {key.value for key in PermissionKey}

    @pytest.mark.parametrize("key", ["ipr_review", "research_approve", PermissionKey.IPR_ASSIGN_SCHOOL])
    def test_valid_keys(self, key):
        assert is_valid_key(key)

    @pytest.mark.parametrize("key", ["ipr_reveiw", "", "IPR_REVIEW", None, 3])
    def test_invalid_keys(self, key):
        assert not is_valid_key(key)

    def test_definition_carries_category_and_module(self):
        definition = get_definition("ipr_approve")
        assert definition.category == "IPR Permissions"
        assert definition.module == "ipr"

    def test_keys_for_module(self):
        assert keys_for_module("research") == (
            PermissionKey.RESEARCH_FILE_NEW,
            PermissionKey.RESEARCH_REVIEW,
            PermissionKey.RESEARCH_APPROVE,
        )
        assert keys_for_module("unknown") == ()


class TestParseKeys:

    def test_returns_enum_members_deduplicated(self):
        assert parse_keys(["ipr_review", "ipr_review", "ipr_approve"]) == {
            PermissionKey.IPR_REVIEW, PermissionKey.IPR_APPROVE,
        }

    def test_reports_every_unknown_key(self):
        with pytest.raises(InvalidArgument) as exc_info:
            parse_keys(["ipr_review", "typo_one", "typo_two"])
        assert exc_info.value.details == {"unknown_keys": ["typo_one", "typo_two"]}

    @pytest.mark.parametrize("raw", ["ipr_review", None, 42])
    def test_rejects_non_collections(self, raw):
        with pytest.raises(InvalidArgument):
            parse_keys(raw)

    def test_rejects_non_string_items(self):
        with pytest.raises(InvalidArgument):
            parse_keys(["ipr_review", 1])


class TestPresentation:

    def test_declaration_order(self):
        listing = list_for_presentation()
        assert [group["category"] for group in listing] == ["IPR Permissions", "Research Permissions"]
        assert [p["key"] for p in listing[0]["permissions"]] == [
            "ipr_file_new", "ipr_review", "ipr_approve", "ipr_assign_school",
        ]

    def test_is_deterministic(self):
        assert list_for_presentation() == list_for_presentation()

    def test_filters_inactive_modules(self):
        listing = list_for_presentation(active_modules={"research"})
        assert [group["module"] for group in listing] == ["research"]

    def test_every_category_belongs_to_a_declared_module(self):
        slugs = {module.slug for module in MODULES}
        assert all(group.module in slugs for group in CATEGORIES)


class TestRoleDefaults:

    @pytest.mark.parametrize("role", [Role.STUDENT, Role.FACULTY])
    def test_filers_get_filing_permissions(self, role):
        assert defaults_for(role) == FILING_KEYS

    @pytest.mark.parametrize("role", [Role.STAFF, Role.ADMIN])
    def test_staff_and_admin_get_nothing(self, role):
        assert defaults_for(role) == frozenset()

    def test_accepts_role_value(self):
        assert defaults_for("faculty") == FILING_KEYS

    def test_unknown_role_gets_nothing(self):
        assert defaults_for("visitor") == frozenset()

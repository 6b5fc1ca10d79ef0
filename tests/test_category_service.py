"""
Tests for the category service facade.
"""
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.core.errors import (
    CyclicAssignment,
    NotFound,
    PermissionDenied,
    StoreUnavailable,
    ValidationError,
)
from app.services.category_bulk import DeletePolicy
from app.services.category_service import CategoryService
from app.services.category_store import CategoryStore


def _parents(service, auth):
    return {node.id: node.record.parentId for node, _ in service.list_flat(auth)}


def _orders(service, auth):
    return {node.id: node.record.displayOrder for node, _ in service.list_flat(auth)}


class TestCreate:
    """Test creating categories."""

    def test_create_defaults(self, service, admin):
        record = service.create(admin, {"name": "  Shoes "})
        assert record.name == "Shoes"
        assert record.slug == "shoes"
        assert record.emoji == "📦"
        assert record.full_name == "📦 Shoes"
        assert record.parentId is None
        assert record.displayOrder == 0
        assert record.isVisible is True

    def test_create_appends_to_group(self, service, admin):
        parent = service.create(admin, {"name": "Apparel"})
        first = service.create(admin, {"name": "Shirts", "parentId": parent.id})
        second = service.create(admin, {"name": "Pants", "parentId": parent.id})
        assert (first.displayOrder, second.displayOrder) == (0, 1)

    def test_blank_name_rejected(self, service, admin):
        with pytest.raises(ValidationError):
            service.create(admin, {"name": "   "})
        with pytest.raises(ValidationError):
            service.create(admin, {})

    def test_missing_parent(self, service, admin):
        with pytest.raises(NotFound):
            service.create(admin, {"name": "Shirts", "parentId": 404})

    def test_duplicate_name_in_group_rejected(self, service, admin):
        """Names are unique within a sibling group, ignoring case."""
        service.create(admin, {"name": "Shoes"})
        with pytest.raises(ValidationError):
            service.create(admin, {"name": "SHOES"})

    def test_same_name_in_other_group_gets_suffixed_slug(self, service, admin):
        service.create(admin, {"name": "Shoes"})
        kids = service.create(admin, {"name": "Kids"})
        nested = service.create(admin, {"name": "Shoes", "parentId": kids.id})
        assert nested.slug == "shoes-2"

    def test_explicit_slug_collision_rejected(self, service, admin):
        service.create(admin, {"name": "Shoes"})
        with pytest.raises(ValidationError):
            service.create(admin, {"name": "Sneakers", "slug": "shoes"})

    def test_hidden_on_create(self, service, admin):
        record = service.create(admin, {"name": "Drafts", "isVisible": False})
        assert record.isVisible is False

    def test_unknown_field_rejected(self, service, admin):
        with pytest.raises(ValidationError):
            service.create(admin, {"name": "Shoes", "children": []})

    def test_requires_authorization(self, service, anonymous):
        with pytest.raises(PermissionDenied):
            service.create(anonymous, {"name": "Shoes"})


class TestUpdate:
    """Test editing categories."""

    def test_rename_follows_derived_slug(self, service, admin):
        record = service.create(admin, {"name": "Shoes"})
        updated = service.update(admin, record.id, {"name": "Boots"})
        assert updated.slug == "boots"

    def test_rename_keeps_custom_slug(self, service, admin):
        record = service.create(admin, {"name": "Sandals", "slug": "summer-sale"})
        updated = service.update(admin, record.id, {"name": "Flip Flops"})
        assert updated.name == "Flip Flops"
        assert updated.slug == "summer-sale"

    def test_display_order_not_editable(self, service, admin):
        record = service.create(admin, {"name": "Shoes"})
        with pytest.raises(ValidationError):
            service.update(admin, record.id, {"displayOrder": 3})

    def test_cyclic_parent_rejected_without_writes(self, service, admin):
        a = service.create(admin, {"name": "A"})
        b = service.create(admin, {"name": "B", "parentId": a.id})
        with pytest.raises(CyclicAssignment):
            service.update(admin, a.id, {"name": "Renamed", "parentId": b.id})
        assert service.get(admin, a.id).name == "A"
        assert _parents(service, admin) == {a.id: None, b.id: a.id}

    def test_missing_category(self, service, admin):
        with pytest.raises(NotFound):
            service.update(admin, 404, {"name": "Ghost"})

    def test_no_changes_returns_current(self, service, admin):
        record = service.create(admin, {"name": "Shoes"})
        assert service.update(admin, record.id, {"name": "Shoes"}) == record


class TestHierarchyScenario:
    """End-to-end create, move and cycle rejection."""

    def test_scenario(self, service, admin):
        a = service.create(admin, {"name": "Electronics"})
        b = service.create(admin, {"name": "Phones", "parentId": a.id})
        c = service.create(admin, {"name": "Laptops", "parentId": a.id})

        forest = service.list_tree(admin)
        assert [n.id for n in forest] == [a.id]
        assert [n.id for n in forest[0].children] == [b.id, c.id]

        assignments = service.move(admin, c.id, "up")
        assert [(x.id, x.displayOrder) for x in assignments] == [(c.id, 0), (b.id, 1)]
        assert [n.id for n in service.list_tree(admin)[0].children] == [c.id, b.id]

        with pytest.raises(CyclicAssignment):
            service.reparent(admin, a.id, c.id)
        assert _parents(service, admin) == {a.id: None, b.id: a.id, c.id: a.id}

    def test_move_at_boundary_keeps_order(self, service, admin):
        a = service.create(admin, {"name": "A"})
        b = service.create(admin, {"name": "B"})
        assignments = service.move(admin, a.id, "up")
        assert [(x.id, x.displayOrder) for x in assignments] == [(a.id, 0), (b.id, 1)]
        assert _orders(service, admin) == {a.id: 0, b.id: 1}

    def test_move_invalid_direction(self, service, admin):
        a = service.create(admin, {"name": "A"})
        with pytest.raises(ValidationError):
            service.move(admin, a.id, "left")

    def test_orphan_listed_as_root(self, service, admin, make_category):
        orphan = make_category("Orphan", parent_id=777)
        assert orphan in [n.id for n in service.list_tree(admin)]


class TestReparent:
    """Test moving a category to another parent."""

    @pytest.fixture
    def groups(self, service, admin):
        p1 = service.create(admin, {"name": "P1"})
        p2 = service.create(admin, {"name": "P2"})
        x = service.create(admin, {"name": "X", "parentId": p1.id})
        y = service.create(admin, {"name": "Y", "parentId": p1.id})
        z = service.create(admin, {"name": "Z", "parentId": p1.id})
        w = service.create(admin, {"name": "W", "parentId": p2.id})
        return {"p1": p1.id, "p2": p2.id, "x": x.id, "y": y.id, "z": z.id, "w": w.id}

    def test_moves_to_end_and_closes_gap(self, service, admin, groups):
        moved = service.reparent(admin, groups["y"], groups["p2"])
        assert moved.parentId == groups["p2"]
        assert moved.displayOrder == 1
        orders = _orders(service, admin)
        assert orders[groups["x"]] == 0
        assert orders[groups["z"]] == 1

    def test_move_to_root(self, service, admin, groups):
        moved = service.reparent(admin, groups["x"], None)
        assert moved.parentId is None
        assert moved.displayOrder == 2

    def test_self_parent(self, service, admin, groups):
        with pytest.raises(CyclicAssignment):
            service.reparent(admin, groups["x"], groups["x"])

    def test_descendant_parent(self, service, admin, groups):
        with pytest.raises(CyclicAssignment):
            service.reparent(admin, groups["p1"], groups["z"])

    def test_missing_parent(self, service, admin, groups):
        with pytest.raises(NotFound):
            service.reparent(admin, groups["x"], 404)

    def test_name_clash_in_target_group(self, service, admin, groups):
        service.create(admin, {"name": "X", "parentId": groups["p2"]})
        with pytest.raises(ValidationError):
            service.reparent(admin, groups["x"], groups["p2"])


class TestReorder:
    """Test drag-and-drop reordering of a sibling group."""

    @pytest.fixture
    def family(self, service, admin):
        parent = service.create(admin, {"name": "Parent"})
        kids = [service.create(admin, {"name": n, "parentId": parent.id}).id for n in ("K1", "K2", "K3")]
        return parent.id, kids

    def test_reorder_is_idempotent(self, service, admin, family):
        parent, (k1, k2, k3) = family
        first = service.reorder(admin, parent, [k3, k1, k2])
        second = service.reorder(admin, parent, [k3, k1, k2])
        assert first == second
        orders = _orders(service, admin)
        assert (orders[k3], orders[k1], orders[k2]) == (0, 1, 2)

    def test_unmentioned_siblings_appended(self, service, admin, family):
        parent, (k1, k2, k3) = family
        assignments = service.reorder(admin, parent, [k3])
        assert [(a.id, a.displayOrder) for a in assignments] == [(k3, 0), (k1, 1), (k2, 2)]

    def test_normalizes_gapped_orders(self, service, admin, make_category):
        a = make_category("A", display_order=5)
        b = make_category("B", display_order=5)
        c = make_category("C", display_order=9)
        service.reorder(admin, None, [a, b, c])
        assert _orders(service, admin) == {a: 0, b: 1, c: 2}

    def test_foreign_id_rejected(self, service, admin, family):
        parent, _ = family
        with pytest.raises(ValidationError):
            service.reorder(admin, parent, [parent])

    def test_unknown_id(self, service, admin, family):
        parent, _ = family
        with pytest.raises(NotFound):
            service.reorder(admin, parent, [999])

    def test_duplicates_and_empty_rejected(self, service, admin, family):
        parent, (k1, _, _) = family
        with pytest.raises(ValidationError):
            service.reorder(admin, parent, [k1, k1])
        with pytest.raises(ValidationError):
            service.reorder(admin, parent, [])


class TestVisibility:
    """Hidden categories and unauthorized callers."""

    @pytest.fixture
    def tree(self, service, admin):
        a = service.create(admin, {"name": "A"})
        b = service.create(admin, {"name": "B", "parentId": a.id, "isVisible": False})
        c = service.create(admin, {"name": "C", "parentId": b.id})
        return a.id, b.id, c.id

    def test_anonymous_sees_visible_only(self, service, anonymous, tree):
        a, _, _ = tree
        forest = service.list_tree(anonymous)
        assert [n.id for n in forest] == [a]
        assert forest[0].children == []

    def test_admin_can_request_visible_only(self, service, admin, tree):
        a, b, c = tree
        assert [n.id for n, _ in service.list_flat(admin)] == [a, b, c]
        assert [n.id for n, _ in service.list_flat(admin, visible_only=True)] == [a]

    def test_hidden_ancestor_hides_get(self, service, admin, anonymous, tree):
        _, _, c = tree
        with pytest.raises(NotFound):
            service.get(anonymous, c)
        assert service.get(admin, c).id == c


class TestDeleteAndBulk:
    """Test single and bulk mutations through the facade."""

    def test_delete_promotes_by_default(self, service, admin):
        a = service.create(admin, {"name": "A"})
        b = service.create(admin, {"name": "B", "parentId": a.id})
        c = service.create(admin, {"name": "C", "parentId": b.id})
        result = service.delete(admin, b.id)
        assert result.count == 1
        assert result.promoted == 1
        assert _parents(service, admin) == {a.id: None, c.id: a.id}

    def test_delete_cascade(self, service, admin):
        a = service.create(admin, {"name": "A"})
        b = service.create(admin, {"name": "B", "parentId": a.id})
        service.create(admin, {"name": "C", "parentId": b.id})
        result = service.delete(admin, b.id, policy=DeletePolicy.cascade)
        assert result.cascaded == 1
        assert _parents(service, admin) == {a.id: None}

    def test_delete_missing(self, service, admin):
        with pytest.raises(NotFound):
            service.delete(admin, 404)

    def test_bulk_visibility_with_stale_id(self, service, admin):
        x = service.create(admin, {"name": "X"})
        z = service.create(admin, {"name": "Z"})
        result = service.bulk_set_visibility(admin, [x.id, 999, z.id], False)
        assert result.count == 2
        assert result.partial is True
        assert service.list_tree(admin, visible_only=True) == []

    def test_bulk_ids_validated(self, service, admin, monkeypatch):
        with pytest.raises(ValidationError):
            service.bulk_set_visibility(admin, [], True)
        monkeypatch.setattr(settings, "MAX_BULK_IDS", 2)
        with pytest.raises(ValidationError):
            service.bulk_delete(admin, [1, 2, 3])

    def test_bulk_requires_authorization(self, service, anonymous):
        with pytest.raises(PermissionDenied):
            service.bulk_set_visibility(anonymous, [1], True)
        with pytest.raises(PermissionDenied):
            service.bulk_delete(anonymous, [1])
        with pytest.raises(PermissionDenied):
            service.delete(anonymous, 1)
        with pytest.raises(PermissionDenied):
            service.reparent(anonymous, 1, None)


class TestStoreFailure:
    def test_unavailable_store_surfaces(self, admin):
        session = MagicMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("gone"))
        service = CategoryService(CategoryStore(session))
        with pytest.raises(StoreUnavailable):
            service.list_tree(admin)


class TestOrphanOrdering:
    """Categories whose parent is gone are ordered together with the roots."""

    @pytest.fixture
    def roots(self, make_category):
        a = make_category("A", display_order=0)
        b = make_category("B", display_order=1)
        orphan = make_category("O", parent_id=999, display_order=2)
        return a, b, orphan

    def test_move_orphan_among_roots(self, service, admin, roots):
        a, b, orphan = roots
        assignments = service.move(admin, orphan, "up")
        assert [(x.id, x.displayOrder) for x in assignments] == [(a, 0), (orphan, 1), (b, 2)]
        assert [n.id for n in service.list_tree(admin)] == [a, orphan, b]

    def test_reorder_root_group_with_orphan(self, service, admin, roots):
        a, b, orphan = roots
        service.reorder(admin, None, [orphan, a, b])
        assert [n.id for n in service.list_tree(admin)] == [orphan, a, b]

    def test_move_root_at_boundary_keeps_orphan_position(self, service, admin, roots):
        a, b, orphan = roots
        service.move(admin, orphan, "down")
        assert [n.id for n in service.list_tree(admin)] == [a, b, orphan]

    def test_reparent_orphan_to_root_repairs_parent(self, service, admin, roots):
        _, _, orphan = roots
        moved = service.reparent(admin, orphan, None)
        assert moved.parentId is None


class TestCustomSlug:
    """Explicit slugs survive renames."""

    def test_explicit_slug_shaped_like_derived_is_kept(self, service, admin):
        record = service.create(admin, {"name": "Shoes", "slug": "shoes-2"})
        assert record.customSlug is True
        renamed = service.update(admin, record.id, {"name": "Boots"})
        assert renamed.slug == "shoes-2"

    def test_slug_set_on_update_is_kept(self, service, admin):
        record = service.create(admin, {"name": "Shoes"})
        assert record.customSlug is False
        service.update(admin, record.id, {"slug": "shoes-3"})
        renamed = service.update(admin, record.id, {"name": "Boots"})
        assert renamed.slug == "shoes-3"


class TestDeleteImpact:
    """Preview of what a delete touches."""

    def test_counts(self, service, admin, make_product):
        a = service.create(admin, {"name": "A"})
        b = service.create(admin, {"name": "B", "parentId": a.id})
        c = service.create(admin, {"name": "C", "parentId": b.id})
        service.create(admin, {"name": "D", "parentId": a.id})
        make_product("Lamp", a.id)
        make_product("Desk", c.id)

        impact = service.delete_impact(admin, a.id)
        assert impact.children == 2
        assert impact.descendants == 3
        assert impact.products == 1
        assert impact.descendant_products == 1

    def test_missing_and_unauthorized(self, service, admin, anonymous):
        with pytest.raises(NotFound):
            service.delete_impact(admin, 404)
        with pytest.raises(PermissionDenied):
            service.delete_impact(anonymous, 1)

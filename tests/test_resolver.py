"""
==============================================================================
Code Resolver Tests
==============================================================================

Tests for lookup results and create-form validation.

==============================================================================
"""

import pytest

from stockscan.core.exceptions import InventoryNetworkError, ItemValidationError
from stockscan.schemas.inventory import ItemCreateForm
from stockscan.services.resolver import CodeResolver, Found, Unknown

from fakes import FlakyInventory


class TestResolve:

    def test_known_code_found(self, inventory, coca_cola):
        result = CodeResolver(inventory).resolve("7790001234567")
        assert isinstance(result, Found)
        assert result.item.stock_on_hand == 20

    def test_unknown_code_is_not_an_error(self, inventory):
        result = CodeResolver(inventory).resolve("9999999999999")
        assert result == Unknown(code="9999999999999")

    def test_network_error_propagates(self, inventory):
        resolver = CodeResolver(FlakyInventory(inventory, lookup_failures=1))
        with pytest.raises(InventoryNetworkError):
            resolver.resolve("7790001234567")


class TestCreateForm:
    """Tests for create-flow field validation."""

    def test_missing_name_and_price_reported_per_field(self, inventory):
        with pytest.raises(ItemValidationError) as exc:
            CodeResolver(inventory).create_item("9999999999999", {"name": "  "})

        fields = exc.value.details["fields"]
        assert "name" in fields
        assert "unit_price" in fields

    def test_non_positive_price_rejected(self, inventory):
        with pytest.raises(ItemValidationError) as exc:
            CodeResolver(inventory).create_item("9999999999999", {"name": "Alfajor", "unit_price": 0})
        assert "unit_price" in exc.value.details["fields"]

    def test_fractional_quantity_needs_bulk(self, inventory):
        resolver = CodeResolver(inventory)
        with pytest.raises(ItemValidationError):
            resolver.create_item("9999999999999", {"name": "Rice", "unit_price": 10, "initial_quantity": 1.5})

        item = resolver.create_item(
            "9999999999999",
            {"name": "Rice", "unit_price": 10, "initial_quantity": 1.5, "is_bulk": True, "unit_of_measure": "kg"}
        )
        assert item.stock_on_hand == 1.5

    def test_defaults(self, inventory):
        item = CodeResolver(inventory).create_item("9999999999999", {"name": "Alfajor", "unit_price": 800})
        assert item.stock_on_hand == 1
        assert item.category == "General"

    def test_accepts_parsed_form(self, inventory):
        form = ItemCreateForm(name="Alfajor", unit_price=800, initial_quantity=5)
        assert CodeResolver(inventory).create_item("9999999999999", form).stock_on_hand == 5

"""
Unit tests for BusinessDataService
"""
import pytest
from concurrent.futures import wait
from unittest.mock import MagicMock

from marketplace_hub.database.connection import session_scope
from marketplace_hub.database.models import Company, Contact, Location, Product
from marketplace_hub.services.business_service import validate_contact, validate_product
from marketplace_hub.utils.exceptions import (
    BrokerError,
    NotFoundError,
    UnimplementedError,
    ValidationError,
)


@pytest.fixture
def add_location(session_factory):
    """Insert a location under an existing company"""
    def _add(company_id, location_id, business_name="Main Street Store", token="loc-token"):
        with session_scope(session_factory) as db:
            company = db.query(Company).filter(Company.company_id == company_id).one()
            db.add(Location(
                company_id=company.id,
                location_id=location_id,
                location_token=token,
                business_name=business_name,
                city="Springfield",
            ))
        return location_id

    return _add


class TestValidation:
    """Test input validation"""

    def test_contact_requires_names(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_contact({"first_name": "Ada"})
        assert exc_info.value.field == "last_name"

    def test_contact_rejects_bad_email(self):
        with pytest.raises(ValidationError):
            validate_contact({"first_name": "Ada", "last_name": "L", "email": "nope"})

    def test_contact_drops_unknown_fields(self):
        values = validate_contact({"first_name": "Ada", "last_name": "L", "id": "x"})
        assert "id" not in values
        assert values["is_primary"] is False

    @pytest.mark.parametrize("price", [-1, "10", True, None])
    def test_product_rejects_bad_price(self, price):
        with pytest.raises(ValidationError):
            validate_product({"name": "Widget", "price": price})

    def test_product_normalizes_currency(self):
        values = validate_product({"name": "Widget", "price": 5, "currency": "eur"})
        assert values["currency"] == "EUR"
        assert values["price"] == 5.0

    def test_product_requires_name(self):
        with pytest.raises(ValidationError):
            validate_product({"name": "  "})


class TestTenantReads:
    """Test read-through tenant lookups"""

    def test_get_tenant_caches_store_hit(self, business_service, make_company, fake_redis):
        make_company("c-1")

        tenant = business_service.get_tenant("c-1")

        assert tenant["company_id"] == "c-1"
        assert "access_token" not in tenant
        assert "company:c-1" in fake_redis.data
        assert 0 < fake_redis.ttl("company:c-1") <= 1800

    def test_get_tenant_prefers_cache(self, business_service, cache):
        cache.set("company:cached", {"company_id": "cached"})

        assert business_service.get_tenant("cached") == {"company_id": "cached"}

    def test_get_tenant_not_found(self, business_service):
        with pytest.raises(NotFoundError):
            business_service.get_tenant("missing")

    def test_list_tenants_excludes_inactive(self, business_service, make_company):
        make_company("a")
        make_company("b", is_active=False)

        assert [t["company_id"] for t in business_service.list_tenants()] == ["a"]

    def test_invalidate_tenant_cache(self, business_service, cache):
        cache.set("company:c-1", {"x": 1})
        cache.set("locations:c-1", [])

        business_service.invalidate_tenant_cache("c-1")

        assert cache.get("company:c-1") is None
        assert cache.get("locations:c-1") is None


class TestLocations:
    """Test location reads, bootstrap and updates"""

    def test_existing_locations_skip_provider(self, business_service, provider, make_company, add_location):
        make_company("c-1")
        add_location("c-1", "loc-1")

        locations = business_service.get_locations_by_tenant("c-1")

        assert [l["location_id"] for l in locations] == ["loc-1"]
        assert "location_token" not in locations[0]
        provider.list_locations.assert_not_called()

    def test_empty_store_bootstraps_from_provider(self, business_service, provider, make_company):
        make_company("c-1")
        provider.list_locations.return_value = [
            {"id": "loc-1", "name": "Downtown", "city": "Austin", "location_token": "t1"},
            {"location_id": "loc-2", "business_name": "Uptown"},
            {"name": "no id"},
        ]

        locations = business_service.get_locations_by_tenant("c-1")

        provider.list_locations.assert_called_once_with("access-c-1", "c-1")
        assert {l["location_id"] for l in locations} == {"loc-1", "loc-2"}
        assert {l["business_name"] for l in locations} == {"Downtown", "Uptown"}

    def test_bootstrap_failure_propagates(self, business_service, provider, make_company, cache):
        make_company("c-1")
        provider.list_locations.side_effect = BrokerError("down")

        with pytest.raises(BrokerError):
            business_service.get_locations_by_tenant("c-1")
        assert cache.get("locations:c-1") is None

    def test_get_location(self, business_service, make_company, add_location):
        make_company("c-1")
        add_location("c-1", "loc-1")

        assert business_service.get_location("loc-1")["city"] == "Springfield"
        with pytest.raises(NotFoundError):
            business_service.get_location("loc-x")

    def test_update_location_invalidates_cache(self, business_service, make_company, add_location, cache):
        make_company("c-1")
        add_location("c-1", "loc-1")
        business_service.get_location("loc-1")
        business_service.get_locations_by_tenant("c-1")

        updated = business_service.update_location("loc-1", {"city": "Shelbyville"})

        assert updated["city"] == "Shelbyville"
        assert cache.get("location:loc-1") is None
        assert cache.get("locations:c-1") is None
        assert business_service.get_location("loc-1")["city"] == "Shelbyville"

    @pytest.mark.parametrize("updates", [{}, {"location_token": "x"}, {"business_name": ""}])
    def test_update_location_validation(self, business_service, make_company, add_location, updates):
        make_company("c-1")
        add_location("c-1", "loc-1")

        with pytest.raises(ValidationError):
            business_service.update_location("loc-1", updates)


class TestContactsAndProducts:
    """Test creation, listing and bootstrap of location children"""

    def test_create_contact_invalidates_list(self, business_service, make_company, add_location, cache):
        make_company("c-1")
        add_location("c-1", "loc-1")
        assert business_service.get_contacts_by_location("loc-1") == []

        contact = business_service.create_contact("loc-1", {
            "first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com",
        })

        assert contact["email"] == "ada@example.com"
        assert cache.get("contacts:loc-1") is None
        assert [c["first_name"] for c in business_service.get_contacts_by_location("loc-1")] == ["Ada"]

    def test_create_contact_unknown_location(self, business_service):
        with pytest.raises(NotFoundError):
            business_service.create_contact("missing", {"first_name": "A", "last_name": "B"})

    def test_create_contact_invalid_input_touches_nothing(self, business_service, session_factory):
        with pytest.raises(ValidationError):
            business_service.create_contact("missing", {"first_name": "A"})

        with session_scope(session_factory) as db:
            assert db.query(Contact).count() == 0

    def test_create_product(self, business_service, make_company, add_location, cache):
        make_company("c-1")
        add_location("c-1", "loc-1")
        cache.set("products:loc-1", [])

        product = business_service.create_product("loc-1", {"name": "Widget", "price": 9.5, "sku": "W-1"})

        assert product["currency"] == "USD"
        assert cache.get("products:loc-1") is None

    def test_products_bootstrap_from_provider(self, business_service, provider, make_company, add_location):
        make_company("c-1")
        add_location("c-1", "loc-1")
        provider.list_products.return_value = [
            {"name": "Widget", "sku": "W-1", "price": 3},
            {"name": "Widget again", "sku": "W-1", "price": 4},
            {"name": "Broken", "price": -1},
        ]

        products = business_service.get_products_by_location("loc-1")

        provider.list_products.assert_called_once_with("loc-token", "loc-1")
        assert [p["sku"] for p in products] == ["W-1"]

    def test_unimplemented_provider_raises_and_is_not_cached(
        self, business_service, provider, make_company, add_location, cache
    ):
        make_company("c-1")
        add_location("c-1", "loc-1")
        provider.list_contacts.side_effect = UnimplementedError("list_contacts")
        provider.list_products.side_effect = UnimplementedError("list_products")

        with pytest.raises(UnimplementedError):
            business_service.get_contacts_by_location("loc-1")
        with pytest.raises(UnimplementedError):
            business_service.get_products_by_location("loc-1")

        assert cache.get("contacts:loc-1") is None
        assert cache.get("products:loc-1") is None

    def test_stored_rows_do_not_need_provider(self, business_service, provider, make_company, add_location):
        make_company("c-1")
        add_location("c-1", "loc-1")
        business_service.create_contact("loc-1", {"first_name": "Ada", "last_name": "L"})
        provider.list_contacts.side_effect = UnimplementedError("list_contacts")

        assert [c["first_name"] for c in business_service.get_contacts_by_location("loc-1")] == ["Ada"]
        provider.list_contacts.assert_not_called()

    def test_business_summary(self, business_service, make_company, add_location):
        make_company("c-1")
        add_location("c-1", "loc-1")
        add_location("c-1", "loc-2")
        business_service.create_contact("loc-1", {"first_name": "A", "last_name": "B"})
        business_service.create_product("loc-2", {"name": "P"})
        business_service.create_product("loc-2", {"name": "Q"})

        summary = business_service.business_summary("c-1")

        assert summary["locations"] == 2
        assert summary["contacts"] == 1
        assert summary["products"] == 2


class TestSyncTenantData:
    """Test forced provider sync"""

    def test_sync_upserts_without_overwriting(
        self, business_service, provider, make_company, add_location, session_factory, cache
    ):
        make_company("c-1")
        add_location("c-1", "loc-1", business_name="Original")
        provider.list_locations.return_value = [
            {"id": "loc-1", "name": "Renamed upstream"},
            {"id": "loc-2", "name": "New"},
        ]
        provider.list_contacts.return_value = [
            {"first_name": "Ada", "last_name": "L", "email": "ada@example.com"},
        ]
        provider.list_products.side_effect = UnimplementedError("list_products")

        futures = business_service.sync_tenant_data("c-1")
        wait(futures, timeout=5)

        assert len(futures) == 2
        assert all(f.result()["contacts"] == 1 for f in futures)
        with session_scope(session_factory) as db:
            names = {l.location_id: l.business_name for l in db.query(Location).all()}
            assert db.query(Contact).count() == 2
            assert db.query(Product).count() == 0
        assert names == {"loc-1": "Original", "loc-2": "New"}
        assert len(cache.get("locations:c-1")) == 2

    def test_sync_unknown_company_raises(self, business_service, provider):
        with pytest.raises(NotFoundError):
            business_service.sync_tenant_data("missing")

        provider.list_locations.assert_not_called()

    def test_sync_provider_failure_raises(self, business_service, provider, make_company, cache):
        make_company("c-1")
        provider.list_locations.side_effect = BrokerError("down")

        with pytest.raises(BrokerError):
            business_service.sync_tenant_data("c-1")

        assert cache.get("locations:c-1") is None

    def test_background_failures_are_not_raised(
        self, business_service, provider, make_company, add_location
    ):
        make_company("c-1")
        add_location("c-1", "loc-1")
        provider.list_contacts.side_effect = BrokerError("down")
        provider.list_products.side_effect = RuntimeError("boom")

        futures = business_service.sync_tenant_data("c-1")
        wait(futures, timeout=5)

        assert [f.result() for f in futures] == [{"contacts": 0, "products": 0}]

    def test_sync_after_shutdown_queues_nothing(
        self, session_factory, provider, cache, make_company, add_location
    ):
        from marketplace_hub.services import BusinessDataService

        make_company("c-1")
        add_location("c-1", "loc-1")
        service = BusinessDataService(session_factory, provider, cache, max_workers=1)
        service.shutdown()

        assert service.sync_tenant_data("c-1") == []
        assert [l["location_id"] for l in cache.get("locations:c-1")] == ["loc-1"]
        provider.list_contacts.assert_not_called()

    def test_get_locations_served_from_cache(self, session_factory, provider, cache, make_company):
        from marketplace_hub.services import BusinessDataService

        make_company("c-1")
        provider.list_locations.return_value = [{"id": "loc-1"}]
        counting_factory = MagicMock(wraps=session_factory)
        service = BusinessDataService(counting_factory, provider, cache, max_workers=1)

        try:
            first = service.get_locations_by_tenant("c-1")
            calls = counting_factory.call_count

            second = service.get_locations_by_tenant("c-1")
        finally:
            service.shutdown()

        assert first == second
        assert counting_factory.call_count == calls
        provider.list_locations.assert_called_once()

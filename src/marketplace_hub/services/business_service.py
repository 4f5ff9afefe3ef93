"""
Business data service.

Read-through cache in front of the relational store for companies,
locations, contacts and products. The external provider is only used to
bootstrap empty collections or on an explicit tenant sync; rows already in
the store are never overwritten by provider data.

Cache keys:
- company:{company_id}        30 minutes
- location:{location_id}      30 minutes
- locations:{company_id}      15 minutes
- contacts:{location_id}      15 minutes
- products:{location_id}      15 minutes
"""

from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta
from typing import Any, Callable, Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from marketplace_hub.cache.two_tier_cache import TwoTierCache
from marketplace_hub.database.connection import session_scope
from marketplace_hub.database.models import Company, Contact, Location, Product
from marketplace_hub.database.models.location import LOCATION_FIELDS
from marketplace_hub.providers.base import BusinessDataProvider
from marketplace_hub.utils.exceptions import (
    NotFoundError,
    UnimplementedError,
    ValidationError,
)
from marketplace_hub.utils.logger import get_logger

logger = get_logger(__name__)

RECORD_TTL = timedelta(minutes=30)
LIST_TTL = timedelta(minutes=15)

CONTACT_FIELDS = ("first_name", "last_name", "title", "email", "phone", "mobile", "is_primary")
PRODUCT_FIELDS = ("name", "description", "category", "price", "currency", "sku", "is_active")


def company_key(company_id: str) -> str:
    return f"company:{company_id}"


def location_key(location_id: str) -> str:
    return f"location:{location_id}"


def locations_key(company_id: str) -> str:
    return f"locations:{company_id}"


def contacts_key(location_id: str) -> str:
    return f"contacts:{location_id}"


def products_key(location_id: str) -> str:
    return f"products:{location_id}"


def _require_text(data: Dict[str, Any], field: str) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()


def validate_contact(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate contact input.

    Returns:
        Dict restricted to contact fields

    Raises:
        ValidationError: On missing names or a malformed email
    """
    if not isinstance(data, dict):
        raise ValidationError("Contact data must be an object")

    values = {k: data[k] for k in CONTACT_FIELDS if k in data}
    values["first_name"] = _require_text(data, "first_name")
    values["last_name"] = _require_text(data, "last_name")

    email = values.get("email")
    if email is not None and (not isinstance(email, str) or "@" not in email):
        raise ValidationError(f"Invalid email: {email!r}", field="email")

    values["is_primary"] = bool(values.get("is_primary", False))
    return values


def validate_product(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate product input.

    Raises:
        ValidationError: On a missing name, bad price or bad currency code
    """
    if not isinstance(data, dict):
        raise ValidationError("Product data must be an object")

    values = {k: data[k] for k in PRODUCT_FIELDS if k in data}
    values["name"] = _require_text(data, "name")

    price = values.get("price", 0.0)
    if isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0:
        raise ValidationError(f"Invalid price: {price!r}", field="price")
    values["price"] = float(price)

    currency = values.get("currency")
    if currency is not None:
        if not isinstance(currency, str) or len(currency) != 3:
            raise ValidationError(f"Invalid currency: {currency!r}", field="currency")
        values["currency"] = currency.upper()

    return values


class BusinessDataService:
    """
    Serves tenant business data with caching and provider bootstrap.

    Background sync tasks run on a bounded thread pool; each opens its own
    session.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        provider: BusinessDataProvider,
        cache: TwoTierCache,
        max_workers: int = 4,
    ):
        """
        Args:
            session_factory: SQLAlchemy session factory
            provider: External business-data provider
            cache: Two-tier cache
            max_workers: Size of the background sync pool
        """
        self.session_factory = session_factory
        self.provider = provider
        self.cache = cache
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="business-sync")

    def _cached(self, key: str, ttl: timedelta, loader: Callable[[], Any]) -> Any:
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        value = loader()
        self.cache.set(key, value, ttl)
        return value

    # Lookups

    def _get_company(self, db: Session, company_id: str) -> Company:
        company = db.query(Company).filter(
            Company.company_id == company_id,
            Company.is_active.is_(True),
            Company.deleted_at.is_(None),
        ).first()
        if company is None:
            raise NotFoundError("Company", company_id)
        return company

    def _get_location(self, db: Session, location_id: str) -> Location:
        location = db.query(Location).filter(
            Location.location_id == location_id,
            Location.deleted_at.is_(None),
        ).first()
        if location is None:
            raise NotFoundError("Location", location_id)
        return location

    def _locations_of(self, db: Session, company: Company) -> List[Location]:
        return (
            db.query(Location)
            .filter(Location.company_id == company.id, Location.deleted_at.is_(None))
            .order_by(Location.created_at)
            .all()
        )

    def _contacts_of(self, db: Session, location: Location) -> List[Contact]:
        return (
            db.query(Contact)
            .filter(Contact.location_id == location.id, Contact.deleted_at.is_(None))
            .order_by(Contact.created_at)
            .all()
        )

    def _products_of(self, db: Session, location: Location) -> List[Product]:
        return (
            db.query(Product)
            .filter(Product.location_id == location.id, Product.deleted_at.is_(None))
            .order_by(Product.created_at)
            .all()
        )

    # Upserts; existing rows are left untouched

    def _upsert_locations(self, db: Session, company: Company, records: List[Dict[str, Any]]) -> int:
        created = 0
        for record in records:
            location_id = record.get("location_id") or record.get("id")
            if not location_id:
                logger.warning(f"Skipping provider location without id for company {company.company_id}")
                continue

            location_id = str(location_id)
            if db.query(Location).filter(Location.location_id == location_id).first() is not None:
                continue

            location = Location(
                company_id=company.id,
                location_id=location_id,
                location_token=record.get("location_token") or "",
            )
            for field in LOCATION_FIELDS:
                if field in record:
                    setattr(location, field, record[field])
            location.business_name = record.get("business_name") or record.get("name") or location_id
            db.add(location)
            db.flush()
            created += 1
        return created

    def _upsert_contacts(self, db: Session, location: Location, records: List[Dict[str, Any]]) -> int:
        created = 0
        for record in records:
            query = db.query(Contact).filter(Contact.location_id == location.id)
            if record.get("email"):
                query = query.filter(Contact.email == record["email"])
            else:
                query = query.filter(
                    Contact.first_name == record.get("first_name"),
                    Contact.last_name == record.get("last_name"),
                )
            if query.first() is not None:
                continue

            try:
                values = validate_contact(record)
            except ValidationError as e:
                logger.warning(f"Skipping provider contact for location {location.location_id}: {e}")
                continue

            db.add(Contact(location_id=location.id, **values))
            db.flush()
            created += 1
        return created

    def _upsert_products(self, db: Session, location: Location, records: List[Dict[str, Any]]) -> int:
        created = 0
        for record in records:
            query = db.query(Product).filter(Product.location_id == location.id)
            if record.get("sku"):
                query = query.filter(Product.sku == record["sku"])
            else:
                query = query.filter(Product.name == record.get("name"))
            if query.first() is not None:
                continue

            try:
                values = validate_product(record)
            except ValidationError as e:
                logger.warning(f"Skipping provider product for location {location.location_id}: {e}")
                continue

            db.add(Product(location_id=location.id, **values))
            db.flush()
            created += 1
        return created

    # Tenants

    def get_tenant(self, company_id: str) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: If there is no active company with this id
        """
        def load():
            with session_scope(self.session_factory) as db:
                return self._get_company(db, company_id).to_dict()

        return self._cached(company_key(company_id), RECORD_TTL, load)

    def list_tenants(self) -> List[Dict[str, Any]]:
        """All active companies, straight from the store."""
        with session_scope(self.session_factory) as db:
            companies = (
                db.query(Company)
                .filter(Company.is_active.is_(True), Company.deleted_at.is_(None))
                .order_by(Company.company_name)
                .all()
            )
            return [company.to_dict() for company in companies]

    def invalidate_tenant_cache(self, company_id: str) -> None:
        """Drop cached tenant and location-list entries, e.g. on a webhook."""
        self.cache.delete(company_key(company_id))
        self.cache.delete(locations_key(company_id))
        logger.info(f"Invalidated cache for company {company_id}")

    def business_summary(self, company_id: str) -> Dict[str, Any]:
        """
        Location, contact and product counts for a company.

        Raises:
            NotFoundError: If there is no active company with this id
        """
        with session_scope(self.session_factory) as db:
            company = self._get_company(db, company_id)
            location_ids = [
                row.id for row in
                db.query(Location.id)
                .filter(Location.company_id == company.id, Location.deleted_at.is_(None))
                .all()
            ]

            contacts = products = 0
            if location_ids:
                contacts = db.query(func.count(Contact.id)).filter(
                    Contact.location_id.in_(location_ids),
                    Contact.deleted_at.is_(None),
                ).scalar()
                products = db.query(func.count(Product.id)).filter(
                    Product.location_id.in_(location_ids),
                    Product.deleted_at.is_(None),
                ).scalar()

            return {
                "company_id": company.company_id,
                "company_name": company.company_name,
                "locations": len(location_ids),
                "contacts": contacts,
                "products": products,
            }

    # Locations

    def get_location(self, location_id: str) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: If the location does not exist
        """
        def load():
            with session_scope(self.session_factory) as db:
                return self._get_location(db, location_id).to_dict()

        return self._cached(location_key(location_id), RECORD_TTL, load)

    def get_locations_by_tenant(self, company_id: str) -> List[Dict[str, Any]]:
        """
        Locations of a company; an empty store is bootstrapped from the provider.

        Raises:
            NotFoundError: If there is no active company with this id
            BrokerError: If the provider bootstrap fails
        """
        def load():
            with session_scope(self.session_factory) as db:
                company = self._get_company(db, company_id)
                locations = self._locations_of(db, company)
                if locations:
                    return [location.to_dict() for location in locations]
                access_token = company.access_token

            logger.info(f"No stored locations for company {company_id}, fetching from provider")
            records = self.provider.list_locations(access_token, company_id)

            with session_scope(self.session_factory) as db:
                company = self._get_company(db, company_id)
                created = self._upsert_locations(db, company, records)
                logger.info(f"Stored {created} locations for company {company_id}")
                return [location.to_dict() for location in self._locations_of(db, company)]

        return self._cached(locations_key(company_id), LIST_TTL, load)

    def update_location(self, location_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update editable location fields.

        Raises:
            ValidationError: On unknown fields or an empty business name
            NotFoundError: If the location does not exist
        """
        if not isinstance(updates, dict) or not updates:
            raise ValidationError("No updates given")

        unknown = sorted(set(updates) - set(LOCATION_FIELDS))
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}", field=unknown[0])
        if "business_name" in updates:
            _require_text(updates, "business_name")

        with session_scope(self.session_factory) as db:
            location = self._get_location(db, location_id)
            for field, value in updates.items():
                setattr(location, field, value)
            db.flush()
            company_id = location.company.company_id
            data = location.to_dict()

        self.cache.delete(location_key(location_id))
        self.cache.delete(locations_key(company_id))
        logger.info(f"Updated location {location_id}: {', '.join(sorted(updates))}")
        return data

    # Contacts and products

    def _children(self, location_id: str, fetch, upsert, list_rows) -> List[Dict[str, Any]]:
        with session_scope(self.session_factory) as db:
            location = self._get_location(db, location_id)
            rows = list_rows(db, location)
            if rows:
                return [row.to_dict() for row in rows]
            location_token = location.location_token

        records = fetch(location_token, location_id)

        with session_scope(self.session_factory) as db:
            location = self._get_location(db, location_id)
            upsert(db, location, records)
            return [row.to_dict() for row in list_rows(db, location)]

    def get_contacts_by_location(self, location_id: str) -> List[Dict[str, Any]]:
        """
        Raises:
            NotFoundError: If the location does not exist
            UnimplementedError: If the store is empty and the provider
                cannot list contacts
        """
        return self._cached(
            contacts_key(location_id),
            LIST_TTL,
            lambda: self._children(
                location_id, self.provider.list_contacts, self._upsert_contacts, self._contacts_of
            ),
        )

    def get_products_by_location(self, location_id: str) -> List[Dict[str, Any]]:
        """
        Raises:
            NotFoundError: If the location does not exist
            UnimplementedError: If the store is empty and the provider
                cannot list products
        """
        return self._cached(
            products_key(location_id),
            LIST_TTL,
            lambda: self._children(
                location_id, self.provider.list_products, self._upsert_products, self._products_of
            ),
        )

    def create_contact(self, location_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a contact at a location.

        Raises:
            ValidationError: On invalid input
            NotFoundError: If the location does not exist
        """
        values = validate_contact(data)

        with session_scope(self.session_factory) as db:
            location = self._get_location(db, location_id)
            contact = Contact(location_id=location.id, **values)
            db.add(contact)
            db.flush()
            result = contact.to_dict()

        self.cache.delete(contacts_key(location_id))
        logger.info(f"Created contact {result['id']} at location {location_id}")
        return result

    def create_product(self, location_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a product at a location.

        Raises:
            ValidationError: On invalid input
            NotFoundError: If the location does not exist
        """
        values = validate_product(data)

        with session_scope(self.session_factory) as db:
            location = self._get_location(db, location_id)
            product = Product(location_id=location.id, **values)
            db.add(product)
            db.flush()
            result = product.to_dict()

        self.cache.delete(products_key(location_id))
        logger.info(f"Created product {result['id']} at location {location_id}")
        return result

    # Sync

    def _sync_location(self, location_id: str) -> Dict[str, int]:
        """Fetch and upsert one location's contacts and products."""
        counts = {"contacts": 0, "products": 0}
        try:
            with session_scope(self.session_factory) as db:
                location_token = self._get_location(db, location_id).location_token
        except Exception as e:
            logger.error(f"Failed to load location {location_id} for sync: {e}")
            return counts

        for kind, fetch, upsert in (
            ("contacts", self.provider.list_contacts, self._upsert_contacts),
            ("products", self.provider.list_products, self._upsert_products),
        ):
            try:
                records = fetch(location_token, location_id)
                with session_scope(self.session_factory) as db:
                    counts[kind] = upsert(db, self._get_location(db, location_id), records)
            except UnimplementedError as e:
                logger.debug(f"Skipping {kind} sync for location {location_id}: {e}")
                continue
            except Exception as e:
                logger.error(f"Failed to sync {kind} for location {location_id}: {e}")
                continue

        self.cache.delete(contacts_key(location_id))
        self.cache.delete(products_key(location_id))
        logger.info(
            f"Synced location {location_id}: {counts['contacts']} contacts, {counts['products']} products"
        )
        return counts

    def sync_tenant_data(self, company_id: str) -> List[Future]:
        """
        Refresh a company's locations from the provider and queue
        per-location contact/product syncs in the background.

        Background failures are logged on the worker and never reach the
        caller. Once the pool is shut down, no syncs are queued.

        Returns:
            Futures of the queued location syncs

        Raises:
            NotFoundError: If there is no active company with this id
            BrokerError: If the provider location fetch fails
        """
        with session_scope(self.session_factory) as db:
            access_token = self._get_company(db, company_id).access_token

        records = self.provider.list_locations(access_token, company_id)

        with session_scope(self.session_factory) as db:
            company = self._get_company(db, company_id)
            created = self._upsert_locations(db, company, records)
            locations = [location.to_dict() for location in self._locations_of(db, company)]

        self.cache.set(locations_key(company_id), locations, LIST_TTL)
        logger.info(f"Synced {len(locations)} locations for company {company_id} ({created} new)")

        futures = []
        for location in locations:
            try:
                futures.append(self.executor.submit(self._sync_location, location["location_id"]))
            except RuntimeError as e:
                logger.warning(f"Background sync skipped for company {company_id}: {e}")
                break
        return futures

    def shutdown(self, wait: bool = True) -> None:
        """Drain the background sync pool."""
        self.executor.shutdown(wait=wait)
        logger.info("Business data service stopped")

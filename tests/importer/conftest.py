from __future__ import annotations

import pytest

from installhub.models import (
    Client,
    Engineer,
    ImportProfile,
    Order,
    OrderStatusEnhanced,
    Partner,
    db,
)


@pytest.fixture
def partner_factory():
    created: list[Partner] = []

    def _factory(*, name: str = "Acme Solar", slug: str | None = None, is_active: bool = True) -> Partner:
        partner = Partner(
            name=name,
            slug=slug or f"{name.lower().replace(' ', '-')}-{len(created) + 1}",
            is_active=is_active,
        )
        db.session.add(partner)
        db.session.commit()
        created.append(partner)
        return partner

    return _factory


@pytest.fixture
def partner(partner_factory) -> Partner:
    return partner_factory(name="Acme Solar", slug="acme-solar")


@pytest.fixture
def engineer_factory():
    counter = {"value": 0}

    def _factory(*, name: str | None = None, email: str | None = None, region: str | None = None) -> Engineer:
        counter["value"] += 1
        engineer = Engineer(
            name=name or f"Engineer {counter['value']}",
            email=email or f"engineer{counter['value']}@installhub.test",
            region=region,
        )
        db.session.add(engineer)
        db.session.commit()
        return engineer

    return _factory


@pytest.fixture
def profile_factory(partner):
    """Import profiles default to the CSV ``JobRef``/``Status`` layout."""

    def _factory(*, partner_obj: Partner | None = None, **overrides) -> ImportProfile:
        owner = partner_obj or partner
        values = {
            "name": "Weekly jobs",
            "source_type": "csv",
            "column_mappings": {"status": "Status", "externalId": "JobRef"},
            "status_mappings": {"AWAITING INSTALL": "awaiting_install_booking"},
            "engineer_mapping_rules": [],
            "status_override_rules": {},
            "default_status": None,
            "is_active": True,
        }
        values.update(overrides)
        profile = ImportProfile(partner_id=owner.id, **values)
        db.session.add(profile)
        db.session.commit()
        return profile

    return _factory


@pytest.fixture
def profile(profile_factory) -> ImportProfile:
    return profile_factory()


@pytest.fixture
def order_factory(partner):
    def _factory(
        *,
        partner_obj: Partner | None = None,
        partner_external_id: str | None = None,
        order_number: str | None = None,
        status: OrderStatusEnhanced = OrderStatusEnhanced.AWAITING_INSTALL_BOOKING,
        manual_status_override: bool = False,
        **fields,
    ) -> Order:
        owner = partner_obj or partner
        order = Order(
            partner_id=owner.id,
            partner_external_id=partner_external_id,
            order_number=order_number,
            is_partner_job=True,
            status_enhanced=status,
            manual_status_override=manual_status_override,
            **fields,
        )
        db.session.add(order)
        db.session.commit()
        return order

    return _factory


@pytest.fixture
def client_record():
    existing = Client(full_name="Jane Existing", email="jane@example.com", phone="0700 000000")
    db.session.add(existing)
    db.session.commit()
    return existing

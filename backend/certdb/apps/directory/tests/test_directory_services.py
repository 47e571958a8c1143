from __future__ import annotations

import pytest

from certdb.apps.directory import schemas as directory_schemas
from certdb.apps.directory import services as directory_services
from certdb.errors import Conflict, InvalidTransition, NotFound


def test_user_email_is_normalized_and_unique(db_session):
    user = directory_services.create_user(
        db_session,
        data=directory_schemas.UserCreate(first_name="Otis", last_name="Ouma", email="  Otis@Example.com "),
    )
    db_session.commit()
    assert user.email == "otis@example.com"
    assert user.full_name == "Otis Ouma"

    with pytest.raises(Conflict):
        directory_services.create_user(
            db_session,
            data=directory_schemas.UserCreate(first_name="Other", last_name="Otis", email="otis@example.com"),
        )


def test_offering_versions_and_deprecation(db_session):
    parent = directory_services.create_service_parent(
        db_session,
        data=directory_schemas.ServiceParentCreate(name="Rainforest Alliance"),
    )
    offering = directory_services.create_service_offering(
        db_session,
        data=directory_schemas.ServiceOfferingCreate(parent_id=parent.id, version="2020", name="RA Farm"),
    )
    db_session.commit()

    with pytest.raises(Conflict):
        directory_services.create_service_offering(
            db_session,
            data=directory_schemas.ServiceOfferingCreate(parent_id=parent.id, version="2020", name="RA Farm"),
        )
    with pytest.raises(NotFound):
        directory_services.create_service_offering(
            db_session,
            data=directory_schemas.ServiceOfferingCreate(parent_id="missing", version="1", name="Nope"),
        )

    directory_services.deprecate_service_offering(db_session, offering.id)
    db_session.commit()
    assert offering.is_active is False
    assert directory_services.list_service_offerings(db_session, active_only=True) == []

    with pytest.raises(InvalidTransition):
        directory_services.deprecate_service_offering(db_session, offering.id)


def test_list_users_filters_active_and_sorts_by_name(db_session):
    for first, last, active in (("Zara", "Baker", True), ("Amos", "Baker", False), ("Lena", "Abara", True)):
        directory_services.create_user(
            db_session,
            data=directory_schemas.UserCreate(
                first_name=first,
                last_name=last,
                email=f"{first.lower()}@example.com",
                is_active=active,
            ),
        )
    db_session.commit()

    names = [u.full_name for u in directory_services.list_users(db_session)]
    assert names == ["Lena Abara", "Amos Baker", "Zara Baker"]

    active = [u.first_name for u in directory_services.list_users(db_session, active_only=True)]
    assert active == ["Lena", "Zara"]


def test_service_parent_lookup(db_session):
    parent = directory_services.create_service_parent(
        db_session,
        data=directory_schemas.ServiceParentCreate(name="Supplier to Zero"),
    )
    db_session.commit()

    assert directory_services.get_service_parent(db_session, parent.id).name == "Supplier to Zero"
    assert [p.id for p in directory_services.list_service_parents(db_session)] == [parent.id]
    with pytest.raises(NotFound):
        directory_services.get_service_parent(db_session, "missing")

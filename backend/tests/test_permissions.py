from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ylportal.core.errors import Forbidden
from ylportal.db.base import Base
from ylportal.models.area import Area
from ylportal.models.department import Department
from ylportal.models.user import User
from ylportal.models.user_area import AreaRole, UserArea
from ylportal.services import permissions
from ylportal.services.permissions import Action, AnyOf, AreaScoped, OwnerOnly
from ylportal.utils.timezone import now_utc


@pytest.fixture()
def engine():
    eng = create_engine("sqlite+pysqlite:///:memory:", future=True)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    s = Session()
    try:
        yield s
    finally:
        s.close()


def _mk_user(session, is_admin: bool = False) -> User:
    u = User(email=f"{uuid4().hex[:10]}@example.org", name="Test User", password_hash="x", is_admin=is_admin)
    session.add(u)
    session.flush()
    return u


def _mk_area(session, code: str | None = None) -> Area:
    a = Area(name=f"Area {code or uuid4().hex[:6]}", code=code or uuid4().hex[:6].upper())
    session.add(a)
    session.flush()
    return a


def _grant(session, user: User, area: Area, role: str) -> None:
    session.add(UserArea(user_id=user.id, area_id=area.id, role=role))
    session.flush()


def test_global_admin_passes_every_check(session):
    admin = _mk_user(session, is_admin=True)
    area = _mk_area(session)

    assert permissions.evaluate(session, admin, Action.APPROVE)
    assert permissions.evaluate(session, admin, Action.DELETE, AreaScoped(area.id))
    assert permissions.evaluate(session, admin, Action.SPLIT, OwnerOnly("someone-else"))


def test_check_without_condition_is_admin_only(session):
    u = _mk_user(session)
    area = _mk_area(session)
    _grant(session, u, area, AreaRole.ADMIN)

    assert not permissions.evaluate(session, u, Action.CREATE_AREA)
    with pytest.raises(Forbidden):
        permissions.require(session, u, Action.CREATE_AREA)


def test_viewer_and_manager_actions(session):
    viewer = _mk_user(session)
    manager = _mk_user(session)
    area = _mk_area(session)
    _grant(session, viewer, area, AreaRole.VIEWER)
    _grant(session, manager, area, AreaRole.MANAGER)
    cond = AreaScoped(area.id)

    for action in (Action.VIEW, Action.COMMENT, Action.CREATE, Action.CATEGORIZE, Action.FINALIZE):
        assert permissions.evaluate(session, viewer, action, cond)
    for action in (Action.APPROVE, Action.REJECT, Action.CANCEL, Action.SPLIT, Action.IMPORT, Action.DELETE):
        assert not permissions.evaluate(session, viewer, action, cond)
        assert permissions.evaluate(session, manager, action, cond)

    assert permissions.is_area_manager(session, manager, area.id)
    assert not permissions.is_area_manager(session, viewer, area.id)


def test_role_does_not_leak_to_other_areas(session):
    manager = _mk_user(session)
    mine = _mk_area(session)
    other = _mk_area(session)
    _grant(session, manager, mine, AreaRole.MANAGER)

    assert not permissions.evaluate(session, manager, Action.VIEW, AreaScoped(other.id))


def test_deleted_area_grants_nothing(session):
    manager = _mk_user(session)
    area = _mk_area(session)
    _grant(session, manager, area, AreaRole.MANAGER)

    area.deleted_at = now_utc()
    session.flush()

    assert not permissions.evaluate(session, manager, Action.VIEW, AreaScoped(area.id))
    assert permissions.accessible_area_ids(session, manager) == []


def test_owner_only_and_any_of(session):
    u = _mk_user(session)
    other = _mk_user(session)
    area = _mk_area(session)
    _grant(session, u, area, AreaRole.VIEWER)

    assert permissions.evaluate(session, u, Action.DELETE, OwnerOnly(u.id))
    assert not permissions.evaluate(session, u, Action.DELETE, OwnerOnly(other.id))

    either = AnyOf(OwnerOnly(other.id), AreaScoped(area.id))
    assert permissions.evaluate(session, u, Action.VIEW, either)
    assert not permissions.evaluate(session, u, Action.APPROVE, either)
    assert permissions.evaluate(session, u, Action.APPROVE, AnyOf(OwnerOnly(u.id), AreaScoped(area.id)))


def test_unknown_condition_is_rejected(session):
    u = _mk_user(session)
    with pytest.raises(TypeError):
        permissions.evaluate(session, u, Action.VIEW, object())


def test_accessible_areas(session):
    admin = _mk_user(session, is_admin=True)
    u = _mk_user(session)
    a1 = _mk_area(session)
    a2 = _mk_area(session)
    _grant(session, u, a1, AreaRole.VIEWER)

    assert permissions.accessible_area_ids(session, u) == [a1.id]
    assert set(permissions.accessible_area_ids(session, admin)) == {a1.id, a2.id}


def test_foreign_funds_hidden_from_non_admins(session):
    admin = _mk_user(session, is_admin=True)
    owner = _mk_user(session)
    other = _mk_user(session)
    area = _mk_area(session)
    fund = Department(area_id=area.id, name="Fund", code="FUND", user_id=owner.id)
    shared = Department(area_id=area.id, name="Shared", code="SHR")
    session.add_all([fund, shared])
    session.flush()

    assert permissions.foreign_fund_department_ids(session, other) == [fund.id]
    assert permissions.foreign_fund_department_ids(session, owner) == []
    assert permissions.foreign_fund_department_ids(session, admin) == []


def test_reference_data_actions_belong_to_no_role(session):
    u = _mk_user(session)
    area = _mk_area(session)
    _grant(session, u, area, AreaRole.ADMIN)

    for action in permissions.GLOBAL_ACTIONS:
        assert not permissions.evaluate(session, u, action, AreaScoped(area.id))
    assert permissions.KNOWN_ACTIONS >= {Action.DELETE_BANK_ACCOUNT, Action.ASSIGN_ROLE, Action.VIEW}


def test_unknown_action_is_rejected(session):
    admin = _mk_user(session, is_admin=True)
    with pytest.raises(ValueError):
        permissions.evaluate(session, admin, "launch_rockets")

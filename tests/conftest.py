"""
Shared pytest fixtures for the CareDraft workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - org / other_org: Pre-created organizations
    - admin, manager, writer, other_writer, outsider: Pre-created users
    - make_proposal: Factory inserting a proposal in any status
"""

from datetime import datetime, timezone

import pytest

from caredraft import create_app
from caredraft.models import db as _db
from caredraft.models.auth import Organization, User
from caredraft.models.proposal import Proposal, ProposalStatusHistory


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Organizations & users ────────────────────────────────────────────────


def _create_org(name, slug):
    org = Organization(name=name, slug=slug)
    _db.session.add(org)
    _db.session.commit()
    return org


def _create_user(org, email, role):
    user = User(organization_id=org.id, email=email, full_name=email.split("@")[0], role=role)
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def org():
    return _create_org("Sunrise Care", "sunrise-care")


@pytest.fixture()
def other_org():
    return _create_org("Harbour Health", "harbour-health")


@pytest.fixture()
def admin(org):
    return _create_user(org, "admin@sunrise.test", "admin")


@pytest.fixture()
def manager(org):
    return _create_user(org, "manager@sunrise.test", "manager")


@pytest.fixture()
def second_manager(org):
    return _create_user(org, "manager2@sunrise.test", "manager")


@pytest.fixture()
def writer(org):
    return _create_user(org, "writer@sunrise.test", "writer")


@pytest.fixture()
def other_writer(org):
    return _create_user(org, "writer2@sunrise.test", "writer")


@pytest.fixture()
def outsider(other_org):
    return _create_user(other_org, "manager@harbour.test", "manager")


# ── Proposals ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_proposal(org, writer):
    """Insert a proposal directly, optionally with an anchoring history entry.

    ``changed_at`` writes a history row ending in ``status`` at that time.
    """
    def _make(status="draft", *, owner=None, organization=None, title="Home Care Tender 2026",
              created_at=None, changed_at=None):
        owner = owner or writer
        organization = organization or org
        proposal = Proposal(
            organization_id=organization.id,
            title=title,
            status=status,
            owner_id=owner.id,
            created_at=created_at or datetime.now(timezone.utc),
        )
        _db.session.add(proposal)
        _db.session.commit()
        if changed_at is not None:
            _db.session.add(ProposalStatusHistory(
                proposal_id=proposal.id,
                from_status=None,
                to_status=status,
                changed_by=owner.id,
                changed_at=changed_at,
            ))
            _db.session.commit()
        return proposal
    return _make

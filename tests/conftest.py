"""
Global pytest configuration and shared fixtures.

This file makes shared fixtures available to all test modules
and configures pytest settings for the entire test suite.
"""

import os
import tempfile
from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest

from shared.audit import AuditTrail
from shared.auth import Actor, IdentityDirectory, Role, jwt_manager
from shared.database import DatabaseManager
from shared.integrations import (
    DocumentVerificationProvider,
    EmailDispatcher,
    NotificationDispatcher,
)
from record_versioning.service import RecordService
from record_versioning.store import VersionedStore
from kyc_review.models import IdentityDocument, ProofOfAddress
from kyc_review.workflow import KYCWorkflow


# Configure test markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "database: mark test as requiring database"
    )
    config.addinivalue_line(
        "markers", "workflow: mark test as end-to-end workflow test"
    )


@pytest.fixture
def temp_db_path():
    """Create a temporary database file for testing."""
    fd, path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    yield f"sqlite:///{path}"
    try:
        os.unlink(path)
    except OSError:
        pass


@pytest.fixture
def test_db_manager(temp_db_path):
    """Create a test database manager."""
    manager = DatabaseManager(temp_db_path)
    manager.create_tables()
    yield manager
    manager.drop_tables()
    manager.engine.dispose()


@pytest.fixture
def store(test_db_manager):
    return VersionedStore(test_db_manager)


@pytest.fixture
def records(store):
    return RecordService(store)


@pytest.fixture
def identity():
    return IdentityDirectory()


@pytest.fixture
def audit_trail(test_db_manager):
    return AuditTrail(test_db_manager)


@pytest.fixture
def notification_dispatcher(test_db_manager):
    return NotificationDispatcher(test_db_manager)


@pytest.fixture
def email_transport():
    """Email transport recording sent messages instead of delivering them."""
    return MagicMock()


@pytest.fixture
def email_dispatcher(email_transport):
    return EmailDispatcher(email_transport, from_address="no-reply@test.local")


@pytest.fixture
def verification_provider():
    return DocumentVerificationProvider()


@pytest.fixture
def kyc(store, audit_trail, notification_dispatcher, email_dispatcher, identity, verification_provider):
    return KYCWorkflow(
        store=store,
        audit=audit_trail,
        notifications=notification_dispatcher,
        emails=email_dispatcher,
        identity=identity,
        verification=verification_provider,
    )


def make_actor(actor_id, *roles, email=None):
    return Actor(
        actor_id=actor_id,
        actor_name=actor_id.replace("_", " ").title(),
        email=email or f"{actor_id}@example.com",
        groups=set(roles),
    )


@pytest.fixture
def actor_factory():
    """Build actors with the given groups."""
    return make_actor


@pytest.fixture
def admin_actor():
    return make_actor("admin_user", Role.ADMIN)


@pytest.fixture
def super_admin_actor():
    return make_actor("root_user", Role.SUPER_ADMIN)


@pytest.fixture
def compliance_actor():
    return make_actor("compliance_user", Role.COMPLIANCE)


@pytest.fixture
def property_manager_actor():
    return make_actor("property_manager", Role.PROPERTY_MANAGER)


@pytest.fixture
def support_actor():
    return make_actor("support_user", Role.SUPPORT)


@pytest.fixture
def investor_actor(identity):
    actor = make_actor("investor_001", Role.INVESTOR, email="jane.investor@example.com")
    identity.register_actor(actor)
    return actor


@pytest.fixture
def other_investor_actor():
    return make_actor("investor_002", Role.INVESTOR)


@pytest.fixture
def investor_profile():
    return {
        "first_name": "Jane",
        "last_name": "Investor",
        "email": "Jane.Investor@Example.com",
        "phone": "+44 7700 900123",
        "address": "1 High Street, London",
    }


@pytest.fixture
def registered_investor(records, investor_actor, investor_profile):
    return records.register_investor(investor_actor, investor_profile)


@pytest.fixture
def property_details():
    return {
        "property_name": "Riverside Apartments",
        "address_line1": "10 River Road",
        "city": "Manchester",
        "postcode": "M1 1AE",
        "bedrooms": 2,
        "bathrooms": 1,
        "purchase_price": 250000,
        "current_value": 260000,
        "total_shares": 1000,
        "price_per_share": 260,
    }


@pytest.fixture
def sample_property(records, admin_actor, property_details):
    return records.create_property(admin_actor, property_details)


@pytest.fixture
def identity_document():
    return IdentityDocument(
        document_type="PASSPORT",
        document_number="123456789",
        issuing_country="GB",
        expiry_date=date.today() + timedelta(days=365 * 5),
        document_images=["kyc/investor_001/passport-front.jpg"],
    )


@pytest.fixture
def proof_of_address():
    return ProofOfAddress(
        document_type="UTILITY_BILL",
        issue_date=date.today() - timedelta(days=30),
        document_images=["kyc/investor_001/utility-bill.pdf"],
    )


@pytest.fixture
def documented_investor(kyc, registered_investor, investor_actor, identity_document, proof_of_address):
    """Investor who has submitted both KYC documents (status IN_PROGRESS)."""
    kyc.submit_identity_document(registered_investor.entity_id, investor_actor, identity_document)
    return kyc.submit_proof_of_address(registered_investor.entity_id, investor_actor, proof_of_address)


@pytest.fixture
def headers_for(identity):
    """Bearer headers for an actor, registering it in the directory if needed."""
    def build(actor):
        if identity.get_actor(actor.actor_id) is None:
            identity.register_actor(actor)
        token = jwt_manager.create_access_token(actor)
        return {"Authorization": f"Bearer {token}"}
    return build

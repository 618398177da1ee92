"""
Pytest fixtures for CampusCare backend tests.

Provides a file-backed SQLite database (threads in the concurrency tests
need a shared database, which :memory: cannot give them), a recording
notification sink, principals with bearer tokens, and a stocked dispensary.
"""

import pytest

from campuscare import create_app
from campuscare.extensions import db
from campuscare.models import Product
from campuscare.services import dispensary_service, inventory_service, ledger_service
from campuscare.services.auth_service import Principal, issue_token
from campuscare.services.notification_service import RecordingNotificationSink


STUDENT_ID = 101
OTHER_STUDENT_ID = 102
OPERATOR_ID = 1


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("db") / "campuscare-test.sqlite3"
    app = create_app(
        {
            'TESTING': True,
            'SECRET_KEY': 'test-secret',
            'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
            'RETRY_ATTEMPTS': 5,
        },
        notifier=RecordingNotificationSink(),
    )

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh database and empty event log for each test."""
    db.session.rollback()
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    app.extensions["campuscare.notifier"].clear()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def sink(app):
    return app.extensions["campuscare.notifier"]


# =============================================================================
# PRINCIPALS
# =============================================================================

@pytest.fixture
def student():
    return Principal(user_id=STUDENT_ID, role="student")


@pytest.fixture
def other_student():
    return Principal(user_id=OTHER_STUDENT_ID, role="student")


@pytest.fixture
def operator():
    return Principal(user_id=OPERATOR_ID, role="staff")


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def student_headers(app, student):
    return auth_headers(issue_token(student.user_id, student.role))


@pytest.fixture
def other_student_headers(app, other_student):
    return auth_headers(issue_token(other_student.user_id, other_student.role))


@pytest.fixture
def operator_headers(app, operator):
    return auth_headers(issue_token(operator.user_id, operator.role))


# =============================================================================
# CATALOG / DISPENSARY / STOCK
# =============================================================================

@pytest.fixture
def product(db_session):
    product = Product(
        name="Paracetamol 500mg",
        barcode="8901000000011",
        category="medicines",
        brand="Acme Pharma",
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def second_product(db_session):
    product = Product(
        name="Bottled Water 500ml",
        barcode="8901000000028",
        category="beverages",
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def dispensary(db_session, operator):
    """Library kiosk with 20 slots (A1..A10, B1..B10)."""
    return dispensary_service.create_dispensary(
        {
            "name": "Library Kiosk",
            "location": {"building": "Main Library", "floor": 1, "room": "G-12"},
            "capacity": 20,
        },
        operator,
    )


@pytest.fixture
def stocked(dispensary, product, operator):
    """5 units of product in slot A1 at 3000 cents each."""
    return inventory_service.stock_item(
        product_id=product.id,
        dispensary_id=dispensary.id,
        slot_label="A1",
        quantity=5,
        cost_price_cents=1500,
        selling_price_cents=3000,
        requester=operator,
    )


@pytest.fixture
def stocked_second(dispensary, second_product, operator):
    """10 units of second_product in slot A2 at 500 cents each."""
    return inventory_service.stock_item(
        product_id=second_product.id,
        dispensary_id=dispensary.id,
        slot_label="A2",
        quantity=10,
        cost_price_cents=200,
        selling_price_cents=500,
        requester=operator,
    )


@pytest.fixture
def funded_student(db_session, student, operator):
    """Student wallet holding 10000 cents."""
    ledger_service.credit(user_id=student.user_id, amount_cents=10000, requester=operator)
    return student

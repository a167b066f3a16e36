"""
LabLoan - Test Configuration and Fixtures
"""
import os
import uuid
from datetime import date, timedelta
from typing import Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Set testing environment before the app reads its settings
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['AUTO_CREATE_DB'] = 'false'
os.environ['RATE_LIMIT_ENABLED'] = 'false'
os.environ['JWT_SECRET'] = 'test-jwt-secret-for-testing-only'

from labloan.main import app
from labloan.db import Base, get_db
from labloan.models.models import Laboratory, User, Equipment, LoanRequest
from labloan.auth.security import get_password_hash, create_access_token
from labloan.services.permissions import Actor

TEST_PASSWORD = 'Secret123'

test_engine = create_engine(
    'sqlite://',
    connect_args={'check_same_thread': False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=test_engine, autoflush=False, autocommit=False)


@pytest.fixture(scope='function')
def db() -> Generator[Session, None, None]:
    """Fresh schema and session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def client(db: Session) -> Generator[TestClient, None, None]:
    """Test client sharing the test session"""
    def override_get_db():
        try:
            yield db
        except Exception:
            db.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_lab(db: Session):
    counter = {'n': 0}

    def _make(name: Optional[str] = None, code: Optional[str] = None) -> Laboratory:
        counter['n'] += 1
        lab = Laboratory(
            name=name or f"Laboratory {counter['n']}",
            code=code or f"LAB{counter['n']:03d}",
        )
        db.add(lab)
        db.commit()
        return lab

    return _make


@pytest.fixture
def make_user(db: Session):
    def _make(
        role: str = 'student',
        laboratory: Optional[Laboratory] = None,
        status: str = 'active',
        email: Optional[str] = None,
        password: str = TEST_PASSWORD,
        force_password_change: bool = False,
    ) -> User:
        domain = 'ui.ac.id' if role == 'student' else 'che.ui.ac.id'
        user = User(
            name=f'{role.title()} {uuid.uuid4().hex[:6]}',
            email=email or f'{role}.{uuid.uuid4().hex[:8]}@{domain}',
            password_hash=get_password_hash(password),
            role=role,
            status=status,
            laboratory_id=laboratory.id if laboratory else None,
            force_password_change_on_next_login=force_password_change,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_equipment(db: Session):
    counter = {'n': 0}

    def _make(laboratory: Laboratory, total: int = 3, available: Optional[int] = None, status: str = 'active') -> Equipment:
        counter['n'] += 1
        equipment = Equipment(
            laboratory_id=laboratory.id,
            name=f"Microscope {counter['n']}",
            code=f"EQ-{counter['n']:04d}",
            total_quantity=total,
            available_quantity=total if available is None else available,
            status=status,
        )
        db.add(equipment)
        db.commit()
        return equipment

    return _make


@pytest.fixture
def make_loan(db: Session):
    def _make(user: User, equipment: Equipment, quantity: int = 1, status: str = 'pending',
              start: Optional[date] = None, end: Optional[date] = None) -> LoanRequest:
        start = start or date.today() + timedelta(days=1)
        loan = LoanRequest(
            request_number=f'T{uuid.uuid4().hex[:10].upper()}',
            user_id=user.id,
            equipment_id=equipment.id,
            laboratory_id=equipment.laboratory_id,
            quantity_requested=quantity,
            requested_start_date=start,
            requested_end_date=end or start + timedelta(days=3),
            purpose='Titration practicum',
            status=status,
        )
        db.add(loan)
        db.commit()
        return loan

    return _make


@pytest.fixture
def lab_x(make_lab) -> Laboratory:
    return make_lab(name='Analytical Chemistry', code='LABX')


@pytest.fixture
def lab_y(make_lab) -> Laboratory:
    return make_lab(name='Organic Chemistry', code='LABY')


@pytest.fixture
def admin(make_user) -> User:
    return make_user(role='admin')


@pytest.fixture
def student(make_user) -> User:
    return make_user(role='student')


@pytest.fixture
def assistant_x(make_user, lab_x) -> User:
    return make_user(role='lab_assistant', laboratory=lab_x)


@pytest.fixture
def assistant_y(make_user, lab_y) -> User:
    return make_user(role='lab_assistant', laboratory=lab_y)


def actor_of(user: User) -> Actor:
    return Actor.from_user(user)


def auth_headers(user: User) -> dict:
    return {'Authorization': f'Bearer {create_access_token(user)}'}

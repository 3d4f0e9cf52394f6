import os
from types import SimpleNamespace

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-dentcare")
os.environ["CACHE_BACKEND"] = "memory"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from dentcare.cache import get_cache  # noqa: E402
from dentcare.database import Base, get_db  # noqa: E402
from dentcare.main import app  # noqa: E402
from dentcare.models import Clinic, Dentist, Patient, Procedure, User  # noqa: E402
from dentcare.security_utils import create_jwt_token  # noqa: E402

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_jwt_token({'sub': user.open_id})}"}


@pytest.fixture(autouse=True)
def clear_cache():
    get_cache().clear()
    yield
    get_cache().clear()


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def seed(db):
    """Two clinics with users, dentists, patients and a procedure"""
    clinic = Clinic(name="Sorriso Clinic", address="Rua Augusta 10", city="Lisboa", plan="pro")
    other_clinic = Clinic(name="Other Clinic", plan="basic")
    db.add_all([clinic, other_clinic])
    db.flush()

    dentist = Dentist(clinic_id=clinic.id, name="Dr. Marta Lopes", email="marta@sorriso.pt")
    other_dentist = Dentist(clinic_id=other_clinic.id, name="Dr. Rui Costa", email="rui@other.pt")
    db.add_all([dentist, other_dentist])
    db.flush()

    owner = User(open_id="owner-1", name="Clinic Owner", role="admin", clinic_id=clinic.id)
    dentist_user = User(
        open_id="dentist-1", name="Dr. Marta Lopes", role="user", clinic_id=clinic.id, dentist_id=dentist.id
    )
    orphan = User(open_id="orphan-1", name="No Clinic", role="user")
    other_user = User(open_id="other-1", name="Other Owner", role="admin", clinic_id=other_clinic.id)
    db.add_all([owner, dentist_user, orphan, other_user])

    ana = Patient(clinic_id=clinic.id, name="Ana Silva", email="ana@example.com", phone="912345678")
    bruno = Patient(clinic_id=clinic.id, name="Bruno Dias", email="bruno@example.com")
    foreign_patient = Patient(clinic_id=other_clinic.id, name="Carla Reis", email="carla@example.com")
    db.add_all([ana, bruno, foreign_patient])

    procedure = Procedure(clinic_id=clinic.id, code="D001", name="Cleaning", base_price=100.0)
    foreign_procedure = Procedure(clinic_id=other_clinic.id, code="D001", name="Cleaning", base_price=80.0)
    db.add_all([procedure, foreign_procedure])
    db.commit()

    return SimpleNamespace(
        clinic=clinic,
        other_clinic=other_clinic,
        dentist=dentist,
        other_dentist=other_dentist,
        owner=owner,
        dentist_user=dentist_user,
        orphan=orphan,
        other_user=other_user,
        ana=ana,
        bruno=bruno,
        foreign_patient=foreign_patient,
        procedure=procedure,
        foreign_procedure=foreign_procedure,
        headers={
            "owner": auth_headers(owner),
            "dentist": auth_headers(dentist_user),
            "orphan": auth_headers(orphan),
            "other": auth_headers(other_user),
        },
    )

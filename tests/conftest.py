import sys
from collections.abc import Callable, Generator
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from estate_direct.config import Base  # noqa: E402
import estate_direct.config as app_config  # noqa: E402
import estate_direct.main as app_main  # noqa: E402
# Import the full models module so all tables register with Base metadata.
from estate_direct.models import models as _all_models  # noqa: E402,F401
from estate_direct.models.models import Listing, Offer, Property, Transaction, User, utcnow  # noqa: E402
from estate_direct.services import offers as offer_service  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _configure_global_test_db(tmp_path_factory):
    """Configure the app-wide SessionLocal/engine so TestClient uses a DB with all tables."""
    db_dir = tmp_path_factory.mktemp("globaldb")
    db_path = db_dir / "app.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    app_config.SessionLocal = SessionLocal
    app_config.engine = engine
    app_main.engine = engine
    yield
    engine.dispose()


@pytest.fixture(autouse=True)
def _local_email_outbox(tmp_path, monkeypatch):
    """Keep outbound email on the local backend, written under the test's tmp dir."""
    monkeypatch.setattr(app_config.settings, "email_backend", "local")
    monkeypatch.setattr(app_config.settings, "email_output_dir", str(tmp_path / "emails"))
    monkeypatch.setattr(app_config.settings, "platform_fee_rate", Decimal("0.01"))


@pytest.fixture
def session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    db_path = tmp_path / "test.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    try:
        yield sessionmaker(bind=engine)
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Provide a fresh SQLite database for each test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def create_user(db_session: Session) -> Callable[..., User]:
    counter = {"value": 0}

    def _create(email: Optional[str] = None, full_name: Optional[str] = None, is_admin: bool = False) -> User:
        counter["value"] += 1
        user = User(
            email=email or f"user{counter['value']}@example.com",
            full_name=full_name or f"User {counter['value']}",
            is_admin=is_admin,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _create


@pytest.fixture
def create_listing(db_session: Session, create_user) -> Callable[..., Listing]:
    counter = {"value": 0}

    def _create(
        seller: Optional[User] = None,
        province: str = "ON",
        city: str = "Ottawa",
        asking_price: Decimal = Decimal("500000"),
        status: str = "active",
    ) -> Listing:
        counter["value"] += 1
        seller = seller or create_user()
        prop = Property(
            owner_user_id=seller.id,
            street=f"{counter['value']} Maple Avenue",
            city=city,
            province=province,
            postal_code="K1A 0B1",
            status="active",
        )
        db_session.add(prop)
        db_session.flush()
        listing = Listing(
            property_id=prop.id,
            seller_user_id=seller.id,
            asking_price=asking_price,
            status=status,
        )
        db_session.add(listing)
        db_session.commit()
        return listing

    return _create


@pytest.fixture
def offer_terms() -> Callable[..., offer_service.OfferTerms]:
    def _build(**overrides) -> offer_service.OfferTerms:
        now = utcnow()
        values = {
            "offer_price": Decimal("490000"),
            "deposit_amount": Decimal("25000"),
            "deposit_due_date": now + timedelta(days=3),
            "closing_date": now + timedelta(days=60),
            "irrevocable_date": now + timedelta(days=2),
            "conditions": [],
        }
        values.update(overrides)
        return offer_service.OfferTerms(**values)

    return _build


@pytest.fixture
def create_offer(db_session: Session, create_user, offer_terms) -> Callable[..., Offer]:
    def _create(listing: Listing, buyer: Optional[User] = None, **overrides) -> Offer:
        buyer = buyer or create_user()
        offer = offer_service.submit_offer(db_session, buyer, listing.id, offer_terms(**overrides))
        db_session.commit()
        return offer

    return _create


@pytest.fixture
def financing_and_inspection():
    return [
        {"type": "financing", "description": "", "deadline_days": 5},
        {"type": "inspection", "description": "", "deadline_days": 7},
    ]


@pytest.fixture
def accepted_transaction(db_session: Session, create_listing, create_offer) -> Callable[..., Transaction]:
    """Create a listing, submit an offer with the given conditions and accept it."""

    def _accept(conditions: Optional[list] = None, **listing_kwargs) -> Transaction:
        listing = create_listing(**listing_kwargs)
        seller = db_session.get(User, listing.seller_user_id)
        offer = create_offer(listing, conditions=conditions or [])
        transaction = offer_service.accept_offer(db_session, offer, seller)
        db_session.commit()
        return transaction

    return _accept

"""Shared test configuration."""

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure the project root is in the path so imports work
project_root = Path(__file__).parent.parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

# Settings are cached on first use, so test configuration goes in before any backend import
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SHOPEE_PARTNER_ID", "100200")
os.environ.setdefault("SHOPEE_PARTNER_KEY", "test-partner-key")
os.environ.setdefault("ADMIN_API_TOKEN", "test-admin-token")
os.environ.setdefault("ENVIRONMENT", "test")

from backend.database.models import Base, Shop  # noqa: E402
from backend.services.integration_store import IntegrationCredentialStore  # noqa: E402

SHOPEE_SHOP_ID = "5001"


@pytest.fixture
def test_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    return TestSession


@pytest.fixture
def db(test_session):
    session = test_session()
    yield session
    session.close()


def create_connected_shop(db, shopee_shop_id: str = SHOPEE_SHOP_ID, name: str = "Test Shop") -> str:
    """A tenant with an active Shopee integration. Returns the tenant id."""
    shop = Shop(name=name)
    db.add(shop)
    db.commit()
    IntegrationCredentialStore(db).connect(
        shop.id,
        shopee_shop_id,
        access_token="access-1",
        refresh_token="refresh-1",
        expires_in=14400,
    )
    return shop.id


@pytest.fixture
def make_shop(db):
    """Factory for extra tenants: make_shop("5002")."""
    def _make(shopee_shop_id: str, name: str = "Other Shop") -> str:
        return create_connected_shop(db, shopee_shop_id, name)
    return _make


@pytest.fixture
def shop_id(db):
    return create_connected_shop(db)

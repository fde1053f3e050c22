from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def client(db, fake_payment_provider):
    from app.db.session import get_db
    from app.main import app

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    with patch("app.services.payments.service.TBankClient.from_settings", return_value=fake_payment_provider):
        yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": "test-admin-key"}

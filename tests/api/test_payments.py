"""Tests for /payments checkout and admin generation settings."""

USER = {"X-User-Id": "user-1"}


class TestCheckout:
    def test_creates_pending_payment(self, client, db, fake_payment_provider):
        from app.models.payment import Payment

        resp = client.post(
            "/payments",
            json={"tierId": "standard", "styleId": "pinglass", "referenceImages": ["https://img.example/a.jpg"]},
            headers=USER,
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["paymentUrl"] == "https://pay.example/777"
        assert data["amount"] == 999
        assert data["photoCount"] == 15
        payment = db.query(Payment).filter(Payment.id == data["paymentId"]).one()
        assert payment.status == "pending"
        assert payment.provider_payment_id == "777"
        fake_payment_provider.init_payment.assert_called_once()

    def test_unknown_tier(self, client):
        resp = client.post("/payments", json={"tierId": "platinum"}, headers=USER)

        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "validation_error"

    def test_provider_down(self, client, db, fake_payment_provider):
        from app.models.payment import Payment
        from app.services.payments.tbank import PaymentProviderError

        fake_payment_provider.init_payment.side_effect = PaymentProviderError("connect timeout")

        resp = client.post("/payments", json={"tierId": "starter"}, headers=USER)

        assert resp.status_code == 502
        assert db.query(Payment).count() == 0


class TestGenerationSettings:
    def test_update_and_read(self, client, admin_headers):
        resp = client.put(
            "/admin/settings/generation",
            json={"chunk_size": 3, "chunk_delay_seconds": 2.5},
            headers=admin_headers,
        )
        assert resp.status_code == 200

        data = client.get("/admin/settings/generation", headers=admin_headers).json()
        assert data["chunk_size"] == 3
        assert data["chunk_delay_seconds"] == 2.5

    def test_rejects_zero_chunk(self, client, admin_headers):
        resp = client.put("/admin/settings/generation", json={"chunk_size": 0}, headers=admin_headers)

        assert resp.status_code == 400

    def test_requires_admin_key(self, client):
        assert client.get("/admin/settings/generation").status_code == 401

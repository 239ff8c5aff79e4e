import json
import time
import unittest
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import jwt
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from finbot.core.auth import CurrentUser, get_current_user
from finbot.core.config import get_settings
from finbot.core.dependencies import get_accounting_client, get_db
from finbot.main import app
from finbot.models.ledger import Base
from finbot.services.accounting import AccountingClient
from finbot.services.ai.common.providers import MockProvider
from finbot.services.ai.common.router import ResolvedConfig
from finbot.services.memory import ConversationKey, ConversationTurn, get_memory_store


def _intent(intent, **entities):
    return json.dumps(
        {
            "intent": intent,
            "confidence": 0.9,
            "entities": {"client": None, "amount": None, "description": None, "date": None, **entities},
            "reasoning": "test",
        }
    )


class ChatEndpointTests(unittest.TestCase):
    """POST /api/v1/chat/message and the history endpoints."""

    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        self.current_user = CurrentUser(id=str(uuid.uuid4()), access_token="caller-token")
        self.accounting = MagicMock(spec=AccountingClient)
        self.accounting.create_invoice = AsyncMock(return_value={"InvoiceID": "ext-9"})
        self.accounting.get_invoice = AsyncMock()

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_user] = lambda: self.current_user
        app.dependency_overrides[get_accounting_client] = lambda: self.accounting
        self.client = TestClient(app)

        self.provider = MockProvider()
        resolved = ResolvedConfig(
            provider=self.provider, model="", temperature=0.0, max_tokens=100, timeout_seconds=5.0
        )
        self._resolve_patch = patch("finbot.services.ai.common.availability.resolve", return_value=resolved)
        self._resolve_patch.start()

    def tearDown(self):
        self._resolve_patch.stop()
        self.client.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def test_missing_fields_envelope(self):
        self.provider.queue(_intent("CREATE_INVOICE"))
        resp = self.client.post("/api/v1/chat/message", json={"message": "Create an invoice"})
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertTrue(data["requiresMoreInfo"])
        self.assertEqual(data["missingFields"], ["client name", "amount"])
        self.assertFalse(data["success"])
        self.assertFalse(data["error"])
        self.assertIsNone(data["data"])

    def test_invoice_created(self):
        self.provider.queue(_intent("CREATE_INVOICE", client="Acme", amount="500"))
        resp = self.client.post(
            "/api/v1/chat/message",
            json={"message": "Bill Acme 500 for design", "conversationId": "c-1"},
        )
        data = resp.json()
        self.assertTrue(data["success"], data["message"])
        self.assertEqual(data["data"]["client"], "Acme")
        self.assertEqual(data["intent"], "CREATE_INVOICE")

        key = ConversationKey.of(self.current_user.id, "c-1")
        self.assertEqual(len(get_memory_store().turns(key)), 2)

    def test_message_validation(self):
        for body in ({"message": ""}, {"message": "   "}, {"message": "x" * 1001}, {}):
            resp = self.client.post("/api/v1/chat/message", json=body)
            self.assertEqual(resp.status_code, 422, body)

    def test_message_whitespace_stripped(self):
        self.provider.queue(_intent("GENERAL_INQUIRY"), "Hello!")
        resp = self.client.post("/api/v1/chat/message", json={"message": "  hi there \n", "conversationId": "c-3"})
        self.assertEqual(resp.status_code, 200)
        turns = get_memory_store().turns(ConversationKey.of(self.current_user.id, "c-3"))
        self.assertEqual(turns[0].payload["message"], "hi there")
        self.assertEqual(turns[-1].payload["user_message"], "hi there")

    def test_history_and_clear(self):
        store = get_memory_store()
        key = ConversationKey.of(self.current_user.id, "c-2")
        store.append(key, ConversationTurn.conversation("hi", "hello"))
        store.set_pending(key, {"client": "Acme"})

        resp = self.client.get("/api/v1/chat/history/c-2")
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data["conversationId"], "c-2")
        self.assertTrue(data["hasPendingData"])
        self.assertEqual(data["messages"][0]["type"], "conversation")
        self.assertEqual(data["messages"][0]["text"], "User: hi\nBot: hello")

        resp = self.client.delete("/api/v1/chat/history/c-2")
        self.assertEqual(resp.status_code, 204)
        self.assertEqual(store.turns(key), [])
        self.assertIsNone(store.get_pending(key))

    def test_history_is_per_caller(self):
        get_memory_store().append(
            ConversationKey.of("someone-else", "shared"), ConversationTurn.conversation("secret", "reply")
        )
        data = self.client.get("/api/v1/chat/history/shared").json()
        self.assertEqual(data["messages"], [])


class ChatAuthTests(unittest.TestCase):
    """Bearer token handling without the auth override."""

    def setUp(self):
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        app.dependency_overrides.clear()

    def _token(self, **claims):
        payload = {"sub": "user-7", "exp": int(time.time()) + 3600, **claims}
        return jwt.encode(payload, get_settings().jwt_secret, algorithm="HS256")

    def test_missing_token(self):
        resp = self.client.post("/api/v1/chat/message", json={"message": "hi"})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["detail"], "Access token required")

    def test_invalid_token(self):
        resp = self.client.get("/api/v1/chat/history/x", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(resp.status_code, 403)

    def test_expired_token(self):
        token = self._token(exp=int(time.time()) - 60)
        resp = self.client.get("/api/v1/chat/history/x", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(resp.status_code, 403)

    def test_valid_token_identifies_caller(self):
        get_memory_store().append(ConversationKey.of("user-7", "x"), ConversationTurn.conversation("a", "b"))
        token = self._token()
        resp = self.client.get("/api/v1/chat/history/x", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(resp.json()["messages"]), 1)

    def test_user_id_claim_preferred(self):
        get_memory_store().append(ConversationKey.of("legacy-id", "x"), ConversationTurn.conversation("a", "b"))
        token = self._token(userId="legacy-id")
        resp = self.client.get("/api/v1/chat/history/x", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(len(resp.json()["messages"]), 1)

    def test_health(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.json(), {"status": "ok"})
        self.assertIn("X-Request-ID", resp.headers)


if __name__ == "__main__":
    unittest.main()

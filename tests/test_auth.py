import os
import sys
import unittest
from unittest.mock import patch

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from fastapi.testclient import TestClient
from jose import jwt

os.environ["USE_DB"] = "0"
os.environ["STRUCTBI_DISABLE_AUTH"] = "1"

import app.main as main
from app.auth import parse_space_id
from app.db import SqliteDatabase


SECRET = "test-secret"


class TestTokenAuth(unittest.TestCase):
    def setUp(self) -> None:
        self.env = patch.dict(os.environ, {"STRUCTBI_DISABLE_AUTH": "0", "STRUCTBI_JWT_SECRET": SECRET})
        self.env.start()
        self.addCleanup(self.env.stop)
        self.client = TestClient(main.create_app(db=SqliteDatabase(":memory:"), storage=None))

    def _token(self, claims: dict, secret: str = SECRET) -> dict:
        return {"Authorization": f"Bearer {jwt.encode(claims, secret, algorithm='HS256')}"}

    def test_valid_token_selects_the_space(self) -> None:
        headers = self._token({"sub": "user-1", "id_space": 7})
        res = self.client.post(
            "/api/forms/add",
            json={"identifier": "orders", "name": "Orders", "state": "active", "privacy": "private"},
            headers=headers,
        )
        self.assertEqual(res.status_code, 200, res.json())
        body = self.client.get("/api/forms/read", headers=headers).json()
        self.assertEqual(body["data"][0]["id_space"], 7)

    def test_missing_token(self) -> None:
        res = self.client.get("/api/forms/read")
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()["errors"][0]["code"], "AUTH_MISSING_TOKEN")

    def test_token_signed_with_another_secret(self) -> None:
        res = self.client.get("/api/forms/read", headers=self._token({"id_space": 1}, secret="other"))
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()["errors"][0]["code"], "AUTH_INVALID_TOKEN")

    def test_token_without_space(self) -> None:
        res = self.client.get("/api/forms/read", headers=self._token({"sub": "user-1"}))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "SPACE_REQUIRED")

    def test_header_is_ignored_when_auth_is_enabled(self) -> None:
        res = self.client.get("/api/forms/read", headers={"X-Space-Id": "1"})
        self.assertEqual(res.status_code, 401)

    def test_health_needs_no_token(self) -> None:
        self.assertEqual(self.client.get("/health").status_code, 200)


class TestParseSpaceId(unittest.TestCase):
    def test_values(self) -> None:
        cases = [(1, 1), ("12", 12), (" 3 ", 3), (0, None), ("-1", None), ("abc", None), (True, None), (None, None)]
        for raw, expected in cases:
            with self.subTest(raw=raw):
                self.assertEqual(parse_space_id(raw), expected)


if __name__ == "__main__":
    unittest.main()

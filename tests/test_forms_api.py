import os
import sys
import tempfile
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from fastapi.testclient import TestClient

os.environ["USE_DB"] = "0"
os.environ["STRUCTBI_DISABLE_AUTH"] = "1"

import app.main as main
from app.attachments import LocalFileStorage
from app.db import SqliteDatabase


SPACE_1 = {"X-Space-Id": "1"}
SPACE_2 = {"X-Space-Id": "2"}


def _form(identifier: str, name: str = "Orders") -> dict:
    return {"identifier": identifier, "name": name, "state": "active", "privacy": "private", "description": ""}


class TestFormsApi(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.db = SqliteDatabase(":memory:")
        self.client = TestClient(main.create_app(db=self.db, storage=LocalFileStorage(root=self.tmp.name)))

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def _add(self, identifier: str, headers: dict = SPACE_1) -> int:
        res = self.client.post("/api/forms/add", json=_form(identifier), headers=headers)
        body = res.json()
        self.assertEqual(res.status_code, 200, body)
        return body["id"]

    def test_add_and_read(self) -> None:
        form_id = self._add("orders")
        res = self.client.get("/api/forms/read/id", params={"id": form_id}, headers=SPACE_1)
        body = res.json()
        self.assertEqual(res.status_code, 200, body)
        self.assertTrue(body["ok"])
        self.assertEqual(body["data"][0]["identifier"], "orders")
        self.assertEqual(body["data"][0]["id_space"], 1)

        listing = self.client.get("/api/forms/read", headers=SPACE_1).json()
        self.assertEqual([f["identifier"] for f in listing["data"]], ["orders"])

    def test_add_creates_primary_key_column_and_table(self) -> None:
        form_id = self._add("orders")
        rows = self.db.run("SELECT id, identifier FROM forms_columns WHERE id_form = ?", [form_id])
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows.extract(0, "identifier").as_str(), "id")
        table = self.db.run("SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", [f"_structbi_form_{form_id}"])
        self.assertEqual(len(table), 1)

    def test_duplicate_identifier_is_rejected(self) -> None:
        self._add("orders")
        res = self.client.post("/api/forms/add", json=_form("orders"), headers=SPACE_1)
        body = res.json()
        self.assertEqual(res.status_code, 400)
        self.assertFalse(body["ok"])
        self.assertEqual(body["errors"][0]["code"], "ROW_EXISTS")
        self.assertEqual(len(self.db.run("SELECT id FROM forms")), 1)

    def test_invalid_identifier(self) -> None:
        for identifier, code in [("ab", "PARAM_INVALID"), ("bad name", "PARAM_INVALID"), ("", "PARAM_REQUIRED")]:
            with self.subTest(identifier=identifier):
                res = self.client.post("/api/forms/add", json=_form(identifier), headers=SPACE_1)
                body = res.json()
                self.assertEqual(res.status_code, 400)
                self.assertEqual(body["errors"][0]["code"], code)
                self.assertEqual(body["errors"][0]["path"], "identifier")
        self.assertEqual(len(self.db.run("SELECT id FROM forms")), 0)
        tables = self.db.run("SELECT name FROM sqlite_master WHERE type = 'table' AND name LIKE '_structbi_form_%'")
        self.assertEqual(len(tables), 0)

    def test_same_identifier_in_another_space(self) -> None:
        self._add("orders", SPACE_1)
        self._add("orders", SPACE_2)
        self.assertEqual(len(self.client.get("/api/forms/read", headers=SPACE_1).json()["data"]), 1)
        self.assertEqual(len(self.client.get("/api/forms/read", headers=SPACE_2).json()["data"]), 1)

    def test_forms_are_invisible_across_spaces(self) -> None:
        form_id = self._add("orders", SPACE_1)
        body = self.client.get("/api/forms/read/id", params={"id": form_id}, headers=SPACE_2).json()
        self.assertEqual(body["data"], [])
        res = self.client.request("DELETE", "/api/forms/delete", params={"id": form_id}, headers=SPACE_2)
        self.assertEqual(res.status_code, 404)

    def test_modify_keeps_own_identifier(self) -> None:
        form_id = self._add("orders")
        payload = dict(_form("orders", "Customer orders"), id=form_id)
        res = self.client.put("/api/forms/modify", json=payload, headers=SPACE_1)
        body = res.json()
        self.assertEqual(res.status_code, 200, body)
        self.assertEqual(body["affected"], 1)
        read = self.client.get("/api/forms/read/id", params={"id": form_id}, headers=SPACE_1).json()
        self.assertEqual(read["data"][0]["name"], "Customer orders")

    def test_modify_rejects_identifier_of_another_form(self) -> None:
        self._add("orders")
        other = self._add("customers")
        res = self.client.put("/api/forms/modify", json=dict(_form("orders"), id=other), headers=SPACE_1)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "ROW_EXISTS")

    def test_modify_missing_form(self) -> None:
        res = self.client.put("/api/forms/modify", json=dict(_form("orders"), id=99), headers=SPACE_1)
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json()["errors"][0]["code"], "ROW_NOT_FOUND")

    def test_delete_removes_form_columns_and_table(self) -> None:
        form_id = self._add("orders")
        res = self.client.request("DELETE", "/api/forms/delete", params={"id": form_id}, headers=SPACE_1)
        self.assertEqual(res.status_code, 200, res.json())
        self.assertEqual(res.json()["affected"], 1)
        self.assertEqual(self.client.get("/api/forms/read/id", params={"id": form_id}, headers=SPACE_1).json()["data"], [])
        self.assertEqual(len(self.db.run("SELECT id FROM forms_columns WHERE id_form = ?", [form_id])), 0)
        table = self.db.run("SELECT name FROM sqlite_master WHERE name = ?", [f"_structbi_form_{form_id}"])
        self.assertEqual(len(table), 0)

    def test_delete_linked_form_is_rejected(self) -> None:
        customers = self._add("customers")
        self._add("orders")
        self.client.post(
            "/api/forms/columns/add",
            json={"form-identifier": "customers", "identifier": "name", "name": "Name", "column_type": "text", "length": 40},
            headers=SPACE_1,
        )
        res = self.client.post(
            "/api/forms/columns/add",
            json={"form-identifier": "orders", "identifier": "customer", "name": "Customer", "column_type": "link", "link_to": customers},
            headers=SPACE_1,
        )
        self.assertEqual(res.status_code, 200, res.json())
        res = self.client.request("DELETE", "/api/forms/delete", params={"id": customers}, headers=SPACE_1)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(len(self.client.get("/api/forms/read", headers=SPACE_1).json()["data"]), 2)

    def test_missing_space_header(self) -> None:
        res = self.client.get("/api/forms/read")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "SPACE_REQUIRED")

    def test_health_is_public(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"ok": True})


if __name__ == "__main__":
    unittest.main()

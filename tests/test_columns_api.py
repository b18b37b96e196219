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


HEADERS = {"X-Space-Id": "1"}


class TestColumnsApi(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.db = SqliteDatabase(":memory:")
        self.client = TestClient(main.create_app(db=self.db, storage=LocalFileStorage(root=self.tmp.name)))
        self.form_id = self._form("orders")

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def _form(self, identifier: str) -> int:
        res = self.client.post(
            "/api/forms/add",
            json={"identifier": identifier, "name": identifier.title(), "state": "active", "privacy": "private"},
            headers=HEADERS,
        )
        self.assertEqual(res.status_code, 200, res.json())
        return res.json()["id"]

    def _add(self, form: str, identifier: str, column_type: str, **extra):
        payload = {"form-identifier": form, "identifier": identifier, "name": identifier.title(), "column_type": column_type}
        payload.update(extra)
        return self.client.post("/api/forms/columns/add", json=payload, headers=HEADERS)

    def _physical_columns(self, form_id: int) -> list:
        rows = self.db.run(f"PRAGMA table_info(_structbi_form_{form_id})")
        return [row.field("name").as_str() for row in rows]

    def test_types_are_seeded(self) -> None:
        body = self.client.get("/api/forms/columns/types/read", headers=HEADERS).json()
        identifiers = [row["identifier"] for row in body["data"]]
        self.assertEqual(
            identifiers, ["text", "integer", "decimal", "boolean", "date", "datetime", "image", "file", "link"]
        )

    def test_add_column_creates_physical_column(self) -> None:
        res = self._add("orders", "customer", "text", length=50, required=True)
        body = res.json()
        self.assertEqual(res.status_code, 200, body)
        column_id = body["id"]
        self.assertIn(f"_structbi_column_{column_id}", self._physical_columns(self.form_id))

        listing = self.client.get("/api/forms/columns/read", params={"form-identifier": "orders"}, headers=HEADERS).json()
        self.assertEqual([c["identifier"] for c in listing["data"]], ["customer"])
        self.assertEqual(listing["data"][0]["column_type"], "text")
        self.assertEqual(listing["data"][0]["length"], 50)

        one = self.client.get(
            "/api/forms/columns/read/id", params={"form-identifier": "orders", "id": column_id}, headers=HEADERS
        ).json()
        self.assertEqual(one["data"][0]["name"], "Customer")

    def test_duplicate_column_identifier(self) -> None:
        self.assertEqual(self._add("orders", "customer", "text").status_code, 200)
        res = self._add("orders", "customer", "integer")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "ROW_EXISTS")

    def test_id_is_reserved(self) -> None:
        res = self._add("orders", "id", "integer")
        body = res.json()
        self.assertEqual(res.status_code, 400)
        self.assertEqual(body["errors"][0]["path"], "identifier")

    def test_unknown_type(self) -> None:
        res = self._add("orders", "total", "blob")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["path"], "column_type")

    def test_unknown_form(self) -> None:
        res = self._add("missing", "total", "integer")
        self.assertEqual(res.status_code, 404)

    def test_link_target_must_have_a_display_column(self) -> None:
        customers = self._form("customers")
        res = self._add("orders", "customer", "link", link_to=customers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "LINK_TARGET_INCOMPLETE")

        self.assertEqual(self._add("customers", "name", "text", length=40).status_code, 200)
        res = self._add("orders", "customer", "link", link_to=customers)
        self.assertEqual(res.status_code, 200, res.json())

    def test_link_target_must_exist(self) -> None:
        res = self._add("orders", "customer", "link", link_to=999)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "ROW_MISSING")

    def test_modify_updates_metadata_but_not_type(self) -> None:
        column_id = self._add("orders", "customer", "text", length=20).json()["id"]
        res = self.client.put(
            "/api/forms/columns/modify",
            json={
                "form-identifier": "orders",
                "id": column_id,
                "identifier": "client",
                "name": "Client",
                "length": 60,
                "column_type": "integer",
            },
            headers=HEADERS,
        )
        self.assertEqual(res.status_code, 200, res.json())
        self.assertEqual(res.json()["affected"], 1)
        data = self.client.get(
            "/api/forms/columns/read/id", params={"form-identifier": "orders", "id": column_id}, headers=HEADERS
        ).json()["data"][0]
        self.assertEqual(data["identifier"], "client")
        self.assertEqual(data["length"], 60)
        self.assertEqual(data["column_type"], "text")

    def test_primary_key_column_is_protected(self) -> None:
        pk = self.db.run("SELECT id FROM forms_columns WHERE id_form = ? AND identifier = 'id'", [self.form_id]).first()
        res = self.client.request(
            "DELETE", "/api/forms/columns/delete", params={"form-identifier": "orders", "id": pk.as_int()}, headers=HEADERS
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "COLUMN_PRIMARY_KEY")

    def test_delete_drops_physical_column(self) -> None:
        column_id = self._add("orders", "total", "decimal").json()["id"]
        res = self.client.request(
            "DELETE", "/api/forms/columns/delete", params={"form-identifier": "orders", "id": column_id}, headers=HEADERS
        )
        self.assertEqual(res.status_code, 200, res.json())
        self.assertNotIn(f"_structbi_column_{column_id}", self._physical_columns(self.form_id))
        listing = self.client.get("/api/forms/columns/read", params={"form-identifier": "orders"}, headers=HEADERS).json()
        self.assertEqual(listing["data"], [])

    def test_delete_missing_column(self) -> None:
        res = self.client.request(
            "DELETE", "/api/forms/columns/delete", params={"form-identifier": "orders", "id": 999}, headers=HEADERS
        )
        self.assertEqual(res.status_code, 404)

    def test_last_display_column_of_linked_form_is_kept(self) -> None:
        customers = self._form("customers")
        name_id = self._add("customers", "name", "text", length=40).json()["id"]
        self.assertEqual(self._add("orders", "customer", "link", link_to=customers).status_code, 200)
        res = self.client.request(
            "DELETE", "/api/forms/columns/delete", params={"form-identifier": "customers", "id": name_id}, headers=HEADERS
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "FORM_LINKED")


if __name__ == "__main__":
    unittest.main()

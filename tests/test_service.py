"""End-to-end tests for the messagely HTTP API."""

from __future__ import annotations

import sqlite3
import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient

from messagely.config import Settings
from messagely.database import Database
from messagely.service import create_app

PASSWORD = "password"


class MessagelyServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tempdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tempdir.name) / "messagely.sqlite3"
        self.settings = Settings(
            secret_key="service-tests-secret-key-with-enough-bytes",
            bcrypt_work_factor=4,
            database_path=db_path,
        )
        self.database = Database(db_path)
        self.app = create_app(settings=self.settings, database=self.database)
        self.client = TestClient(self.app)
        self.tokens = {name: self._register(name) for name in ("alice", "bob", "carol")}

    def tearDown(self) -> None:
        self.client.close()
        self._tempdir.cleanup()

    def _register(self, username: str) -> str:
        response = self.client.post(
            "/auth/register",
            json={
                "username": username,
                "password": PASSWORD,
                "first_name": username.title(),
                "last_name": "Example",
                "phone": "+14155550000",
            },
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()["token"]

    def _auth(self, username: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[username]}"}

    def _send(self, sender: str, recipient: str, body: str) -> int:
        response = self.client.post(
            "/messages/",
            headers=self._auth(sender),
            json={"to_username": recipient, "body": body},
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()["message"]["id"]

    def assertError(self, response, status_code: int) -> None:
        self.assertEqual(response.status_code, status_code, response.text)
        payload = response.json()
        self.assertEqual(payload["error"]["status"], status_code)
        self.assertTrue(payload["error"]["message"])

    def test_healthcheck(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.json(), {"status": "ok"})

    def test_alice_bob_carol_scenario(self) -> None:
        message_id = self._send("alice", "bob", "hi")

        as_bob = self.client.get(f"/messages/{message_id}", headers=self._auth("bob"))
        self.assertEqual(as_bob.status_code, 200, as_bob.text)
        message = as_bob.json()["message"]
        self.assertEqual(message["body"], "hi")
        self.assertIsNone(message["read_at"])
        self.assertEqual(
            message["from_user"],
            {"username": "alice", "first_name": "Alice", "last_name": "Example", "phone": "+14155550000"},
        )
        self.assertEqual(message["to_user"]["username"], "bob")
        self.assertNotIn("password", str(message))

        read = self.client.post(f"/messages/{message_id}/read", headers=self._auth("bob"))
        self.assertEqual(read.status_code, 200, read.text)
        self.assertEqual(read.json()["message"]["id"], message_id)
        self.assertIsNotNone(read.json()["message"]["read_at"])

        as_alice = self.client.get(f"/messages/{message_id}", headers=self._auth("alice"))
        self.assertEqual(as_alice.status_code, 200, as_alice.text)
        self.assertIsNotNone(as_alice.json()["message"]["read_at"])

        self.assertError(
            self.client.post(f"/messages/{message_id}/read", headers=self._auth("alice")),
            401,
        )
        self.assertError(self.client.get(f"/messages/{message_id}", headers=self._auth("carol")), 401)

    def test_requests_without_token_are_rejected(self) -> None:
        message_id = self._send("alice", "bob", "hi")

        self.assertError(self.client.get(f"/messages/{message_id}"), 401)
        self.assertError(self.client.post(f"/messages/{message_id}/read"), 401)
        self.assertError(self.client.post("/messages/", json={"to_username": "bob", "body": "hey"}), 401)
        self.assertError(self.client.get("/users/"), 401)
        self.assertError(self.client.get("/users/alice"), 401)
        self.assertError(self.client.get("/users/alice/to"), 401)
        self.assertError(self.client.get("/users/alice/from"), 401)

    def test_invalid_token_is_rejected(self) -> None:
        response = self.client.get("/users/", headers={"Authorization": "Bearer not-a-token"})
        self.assertError(response, 401)

        forged = TestClient(
            create_app(
                settings=Settings(
                    secret_key="a-different-secret-key-for-forging-tokens",
                    bcrypt_work_factor=4,
                    database_path=self.settings.database_path,
                ),
                database=self.database,
            )
        )
        foreign_token = forged.post("/auth/login", json={"username": "alice", "password": PASSWORD}).json()["token"]
        response = self.client.get("/users/", headers={"Authorization": f"Bearer {foreign_token}"})
        self.assertError(response, 401)

    def test_token_accepted_from_query_and_body(self) -> None:
        token = self.tokens["alice"]

        by_query = self.client.get("/users/", params={"_token": token})
        self.assertEqual(by_query.status_code, 200, by_query.text)

        by_body = self.client.request("GET", "/users/", json={"_token": token})
        self.assertEqual(by_body.status_code, 200, by_body.text)

        sent = self.client.post("/messages/", json={"_token": token, "to_username": "bob", "body": "via body"})
        self.assertEqual(sent.status_code, 200, sent.text)
        self.assertEqual(sent.json()["message"]["from_username"], "alice")

    def test_sender_comes_from_token_not_payload(self) -> None:
        response = self.client.post(
            "/messages/",
            headers=self._auth("carol"),
            json={"from_username": "alice", "to_username": "bob", "body": "spoof"},
        )
        self.assertEqual(response.status_code, 200, response.text)
        created = response.json()["message"]
        self.assertEqual(created["from_username"], "carol")
        self.assertEqual(set(created), {"id", "from_username", "to_username", "body", "sent_at"})

    def test_create_message_validation(self) -> None:
        headers = self._auth("alice")
        self.assertError(self.client.post("/messages/", headers=headers, json={"body": "no recipient"}), 400)
        self.assertError(self.client.post("/messages/", headers=headers, json={"to_username": "bob"}), 400)
        self.assertError(
            self.client.post("/messages/", headers=headers, json={"to_username": "dave", "body": "hi"}),
            400,
        )

    def test_missing_message_is_not_found(self) -> None:
        self.assertError(self.client.get("/messages/999", headers=self._auth("alice")), 404)
        self.assertError(self.client.post("/messages/999/read", headers=self._auth("alice")), 404)

    def test_mark_read_twice_overwrites_timestamp(self) -> None:
        message_id = self._send("alice", "bob", "hi")

        first = self.client.post(f"/messages/{message_id}/read", headers=self._auth("bob"))
        second = self.client.post(f"/messages/{message_id}/read", headers=self._auth("bob"))
        self.assertEqual(first.status_code, 200, first.text)
        self.assertEqual(second.status_code, 200, second.text)

        detail = self.client.get(f"/messages/{message_id}", headers=self._auth("bob")).json()["message"]
        self.assertEqual(detail["read_at"], second.json()["message"]["read_at"])

    def test_register_duplicate_username(self) -> None:
        response = self.client.post(
            "/auth/register",
            json={
                "username": "alice",
                "password": "other",
                "first_name": "Other",
                "last_name": "Alice",
                "phone": "+14155559999",
            },
        )
        self.assertError(response, 409)

        listing = self.client.get("/users/", headers=self._auth("bob")).json()["users"]
        self.assertEqual([user["username"] for user in listing].count("alice"), 1)

    def test_register_requires_all_fields(self) -> None:
        response = self.client.post("/auth/register", json={"username": "dave", "password": PASSWORD})
        self.assertError(response, 400)

    def test_login(self) -> None:
        ok = self.client.post("/auth/login", json={"username": "alice", "password": PASSWORD})
        self.assertEqual(ok.status_code, 200, ok.text)
        self.assertIn("token", ok.json())

        self.assertError(self.client.post("/auth/login", json={"username": "alice", "password": "nope"}), 400)
        self.assertError(self.client.post("/auth/login", json={"username": "ghost", "password": PASSWORD}), 400)
        self.assertError(self.client.post("/auth/login", json={"username": "alice"}), 400)

    def test_login_updates_last_login(self) -> None:
        before = self.client.get("/users/alice", headers=self._auth("alice")).json()["user"]
        self.client.post("/auth/login", json={"username": "alice", "password": PASSWORD})
        after = self.client.get("/users/alice", headers=self._auth("alice")).json()["user"]

        self.assertEqual(before["join_at"], after["join_at"])
        self.assertGreaterEqual(
            datetime.fromisoformat(after["last_login_at"]),
            datetime.fromisoformat(before["last_login_at"]),
        )

    def test_user_listing_and_profiles(self) -> None:
        listing = self.client.get("/users/", headers=self._auth("carol"))
        self.assertEqual(listing.status_code, 200, listing.text)
        users = listing.json()["users"]
        self.assertEqual([user["username"] for user in users], ["alice", "bob", "carol"])
        self.assertEqual(set(users[0]), {"username", "first_name", "last_name", "phone"})

        own = self.client.get("/users/alice", headers=self._auth("alice"))
        self.assertEqual(own.status_code, 200, own.text)
        self.assertEqual(
            set(own.json()["user"]),
            {"username", "first_name", "last_name", "phone", "join_at", "last_login_at"},
        )

        self.assertError(self.client.get("/users/alice", headers=self._auth("bob")), 401)

    def test_inbox_and_outbox(self) -> None:
        self._send("alice", "bob", "a-to-b")
        self._send("bob", "alice", "b-to-a")

        inbox = self.client.get("/users/alice/to", headers=self._auth("alice"))
        self.assertEqual(inbox.status_code, 200, inbox.text)
        messages = inbox.json()["messages"]
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0]["body"], "b-to-a")
        self.assertEqual(messages[0]["from_user"]["username"], "bob")

        outbox = self.client.get("/users/alice/from", headers=self._auth("alice"))
        self.assertEqual(outbox.status_code, 200, outbox.text)
        messages = outbox.json()["messages"]
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0]["to_user"]["username"], "bob")

        self.assertError(self.client.get("/users/alice/to", headers=self._auth("bob")), 401)
        self.assertError(self.client.get("/users/alice/from", headers=self._auth("carol")), 401)

    def test_out_of_range_message_id_is_not_found(self) -> None:
        huge = 99999999999999999999
        client = TestClient(self.app, raise_server_exceptions=False)

        self.assertError(client.get(f"/messages/{huge}", headers=self._auth("bob")), 404)
        self.assertError(client.post(f"/messages/{huge}/read", headers=self._auth("bob")), 404)

    def test_database_failure_renders_storage_error(self) -> None:
        conn = sqlite3.connect(self.settings.database_path)
        try:
            conn.execute("DROP TABLE messages")
            conn.commit()
        finally:
            conn.close()

        self.assertError(self.client.get("/users/alice/to", headers=self._auth("alice")), 500)

    def test_unexpected_failure_still_uses_error_envelope(self) -> None:
        client = TestClient(self.app, raise_server_exceptions=False)
        with mock.patch.object(self.database, "list_users", side_effect=RuntimeError("boom")):
            response = client.get("/users/", headers=self._auth("alice"))

        self.assertError(response, 500)
        self.assertNotIn("boom", response.text)

    def test_unparseable_body_token_is_unauthenticated(self) -> None:
        message_id = self._send("alice", "bob", "hi")
        token = self.tokens["bob"]

        malformed = self.client.post(
            f"/messages/{message_id}/read",
            content=b'{"_token": "' + token.encode("ascii"),
            headers={"Content-Type": "application/json"},
        )
        self.assertError(malformed, 401)

        not_json = self.client.post(
            f"/messages/{message_id}/read",
            content=f"_token={token}",
            headers={"Content-Type": "text/plain"},
        )
        self.assertError(not_json, 401)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

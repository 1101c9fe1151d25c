import json
import os
import tempfile
import unittest

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from catalog.api.deps import get_manager, get_queue, get_settings
from catalog.api.main import app
from catalog.config import Settings
from catalog.db.models import Base
from catalog.jobs.models import Job, JobStatus
from catalog.jobs.queue import DatabaseQueue
from catalog.scraper.plugins import build_default_manager

RESELLERS = [
    {"id": "keebs", "reseller_id": "r-keebs", "reseller_name": "Keebs", "url": "https://keebs.myshopify.com"},
    {"id": "stacks", "reseller_id": "r-stacks", "reseller_name": "StacksKB",
     "url": "https://stackskb.com/product-category/keycaps/"},
    {"id": "old", "reseller_id": "r-old", "reseller_name": "Old", "url": "https://old.example.com", "active": False},
]


class JobApiTests(unittest.TestCase):
    def setUp(self):
        engine = create_engine(
            "sqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.queue = DatabaseQueue(sessionmaker(bind=engine, expire_on_commit=False))

        fd, self.resellers_path = tempfile.mkstemp(suffix=".json")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(RESELLERS, f)

        self.settings = Settings(resellers_file=self.resellers_path, admin_token="secret", page_delay=0)
        app.dependency_overrides[get_settings] = lambda: self.settings
        app.dependency_overrides[get_queue] = lambda: self.queue
        app.dependency_overrides[get_manager] = lambda: build_default_manager(self.settings)
        self.client = TestClient(app)
        self.auth = {"x-token": "secret"}

    def tearDown(self):
        app.dependency_overrides.clear()
        os.remove(self.resellers_path)

    def test_healthz(self):
        resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "ok")

    def test_plugins(self):
        resp = self.client.get("/plugins")
        self.assertEqual(resp.status_code, 200)
        by_name = {p["name"]: p for p in resp.json()}
        self.assertEqual(by_name["shopify"]["supported_types"], ["SHOPIFY"])
        self.assertTrue(by_name["stackskb"]["handles_pagination"])

    def test_create_scrape_job(self):
        resp = self.client.post(
            "/jobs/scrape",
            json={"config_id": "keebs", "options": {"limit": "50"}, "all_pages": False},
            headers=self.auth,
        )

        self.assertEqual(resp.status_code, 201, resp.text)
        body = resp.json()
        self.assertEqual(body["status"], "pending")
        self.assertEqual(body["type"], "scrape_products")
        self.assertEqual(body["payload"]["source_type"], "SHOPIFY")
        self.assertFalse(body["payload"]["all_pages"])
        self.assertEqual(self.queue.get_job(body["id"]).payload["options"], {"limit": "50"})

    def test_create_requires_token(self):
        resp = self.client.post("/jobs/scrape", json={"config_id": "keebs"})
        self.assertEqual(resp.status_code, 401)
        resp = self.client.post("/jobs/scrape", json={"config_id": "keebs"}, headers={"x-token": "wrong"})
        self.assertEqual(resp.status_code, 401)

    def test_create_unknown_or_inactive_config(self):
        resp = self.client.post("/jobs/scrape", json={"config_id": "nope"}, headers=self.auth)
        self.assertEqual(resp.status_code, 404)
        resp = self.client.post("/jobs/scrape", json={"config_id": "old"}, headers=self.auth)
        self.assertEqual(resp.status_code, 400)

    def test_scrape_all(self):
        resp = self.client.post("/jobs/scrape-all", headers=self.auth)
        self.assertEqual(resp.status_code, 201, resp.text)
        self.assertEqual(resp.json()["type"], "scrape_all_sites")
        self.assertEqual(resp.json()["max_attempts"], 1)

    def test_list_and_get(self):
        a = self.queue.enqueue(Job.new("scrape_products"))
        b = self.queue.enqueue(Job.new("scrape_products"))
        self.queue.cancel_job(a.id)

        resp = self.client.get("/jobs")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["total"], 2)

        resp = self.client.get("/jobs", params={"status": "pending"})
        self.assertEqual([j["id"] for j in resp.json()["items"]], [b.id])

        resp = self.client.get(f"/jobs/{a.id}")
        self.assertEqual(resp.json()["status"], "cancelled")
        self.assertEqual(self.client.get("/jobs/missing").status_code, 404)

    def test_invalid_status_filter(self):
        self.assertEqual(self.client.get("/jobs", params={"status": "exploded"}).status_code, 422)

    def test_cancel(self):
        pending = self.queue.enqueue(Job.new("scrape_products"))
        resp = self.client.delete(f"/jobs/{pending.id}", headers=self.auth)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "cancelled")

        self.queue.enqueue(Job.new("scrape_products"))
        running = self.queue.claim_next()
        resp = self.client.delete(f"/jobs/{running.id}", headers=self.auth)
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(self.queue.get_job(running.id).status, JobStatus.RUNNING)

        self.assertEqual(self.client.delete("/jobs/missing", headers=self.auth).status_code, 404)

    def test_open_access_without_configured_token(self):
        self.settings = Settings(resellers_file=self.resellers_path, admin_token="")
        resp = self.client.post("/jobs/scrape", json={"config_id": "keebs"})
        self.assertEqual(resp.status_code, 201, resp.text)


if __name__ == "__main__":
    unittest.main()

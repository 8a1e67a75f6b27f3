from __future__ import annotations

import importlib
import io
import json
import os
import shutil
import sys
import time
import unittest
import uuid
import zipfile
from contextlib import asynccontextmanager
from pathlib import Path
from unittest import mock

from fastapi import FastAPI
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from archive_reader import load_archive  # noqa: E402
from trip_metadata import parse_metadata_document, validate_folder_structure, validate_structure  # noqa: E402
from trip_parser import TripParser  # noqa: E402


def make_zip(files: dict[str, bytes | str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, mode="w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def trip_payload(title: str, **overrides) -> dict:
    payload = {
        "title": title,
        "summary": "A short summary of the trip",
        "destination": "Langhe",
        "theme": "Colline",
        "characteristics": ["Bel paesaggio"],
        "recommended_seasons": ["Autunno"],
    }
    payload.update(overrides)
    return payload


class BatchApiTests(unittest.TestCase):
    def setUp(self):
        self._tmp_root = BACKEND_DIR / "tests" / ".tmp"
        self._tmp_root.mkdir(parents=True, exist_ok=True)
        self._db_path = self._tmp_root / f"batch_api_test_{uuid.uuid4().hex}.db"
        self._storage_dir = self._tmp_root / f"batch_api_storage_{uuid.uuid4().hex}"
        self._env_backup = {
            "DB_PATH": os.environ.get("DB_PATH"),
            "STORAGE_BACKEND": os.environ.get("STORAGE_BACKEND"),
            "STORAGE_DIR": os.environ.get("STORAGE_DIR"),
        }
        os.environ["DB_PATH"] = str(self._db_path)
        os.environ["STORAGE_BACKEND"] = "local"
        os.environ["STORAGE_DIR"] = str(self._storage_dir)

        import config
        import db
        import batch_jobs
        import trip_store
        import storage
        import job_runner
        import batch_processor
        import batch_api

        importlib.reload(config)
        importlib.reload(db)
        importlib.reload(batch_jobs)
        importlib.reload(trip_store)
        importlib.reload(storage)
        importlib.reload(job_runner)
        importlib.reload(batch_processor)
        importlib.reload(batch_api)

        self.batch_api = batch_api

        @asynccontextmanager
        async def lifespan(_app: FastAPI):
            await db.init_db()
            runner = job_runner.JobRunner(workers=1)
            processor = batch_processor.BatchProcessor(
                storage.LocalFileStorage(self._storage_dir, public_url="/files"),
                runner=runner,
            )
            runner.set_handler(processor.process)
            await runner.start()
            batch_api.set_processor(processor)
            try:
                yield
            finally:
                batch_api.set_processor(None)
                await runner.stop()

        app = FastAPI(lifespan=lifespan)
        app.include_router(batch_api.router)

        self.client = TestClient(app)
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)

        for key, value in self._env_backup.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

        for suffix in ("", "-wal", "-shm"):
            candidate = Path(f"{self._db_path}{suffix}")
            if candidate.exists():
                candidate.unlink()
        shutil.rmtree(self._storage_dir, ignore_errors=True)

    def _upload(self, archive: bytes, filename: str = "trips.zip", owner_id: str = "owner-1"):
        return self.client.post(
            "/api/trips/batch",
            files={"file": (filename, archive, "application/zip")},
            data={"owner_id": owner_id},
        )

    def _wait_until_complete(self, status_url: str) -> dict:
        for _ in range(200):
            response = self.client.get(status_url)
            self.assertEqual(response.status_code, 200)
            body = response.json()
            if body["is_complete"]:
                return body
            time.sleep(0.05)
        self.fail(f"Job behind {status_url} did not finish")

    def test_upload_and_poll_until_completed(self):
        archive = make_zip(
            {
                "viaggi.json": json.dumps(trip_payload("Langhe in autunno")),
                "media/a.jpg": b"jpg",
                "main.gpx": "<gpx/>",
            }
        )

        response = self._upload(archive)
        self.assertEqual(response.status_code, 202)
        payload = response.json()
        self.assertTrue(payload["job_id"].startswith("batch_"))
        self.assertEqual(payload["status_url"], f"/api/trips/batch/status/{payload['job_id']}")

        status = self._wait_until_complete(payload["status_url"])
        self.assertEqual(status["status"], "completed")
        self.assertEqual(status["owner_id"], "owner-1")
        self.assertEqual(
            status["progress"],
            {"percentage": 100, "completed": 1, "total": 1, "remaining": 0},
        )
        self.assertEqual(len(status["created_trip_ids"]), 1)
        self.assertFalse(status["has_errors"])
        self.assertEqual(status["error_groups"], [])
        self.assertIsNotNone(status["completed_at"])
        self.assertGreaterEqual(status["duration_ms"], 0)

    def test_partial_failure_reports_grouped_errors(self):
        payload = {
            "viaggi": [
                trip_payload("Barolo"),
                trip_payload("Barbaresco", recommended_seasons=["Monsone"]),
            ]
        }
        archive = make_zip(
            {
                "viaggi.json": json.dumps(payload),
                "01-barolo/media/a.jpg": b"1",
                "02-barbaresco/media/a.jpg": b"2",
                "01-barolo/tappe/bad-name/tappa.gpx": "<gpx/>",
            }
        )

        response = self._upload(archive)
        self.assertEqual(response.status_code, 202)
        status = self._wait_until_complete(response.json()["status_url"])

        self.assertEqual(status["status"], "completed")
        self.assertEqual(status["progress"]["percentage"], 50)
        self.assertTrue(status["has_errors"])
        self.assertEqual(len(status["warnings"]), 1)
        self.assertIn("Stage folders not numbered", status["warnings"][0])

        self.assertEqual([group["category"] for group in status["error_groups"]], ["content"])
        error = status["error_groups"][0]["errors"][0]
        self.assertEqual(error["trip_index"], 1)
        self.assertEqual(error["field"], "recommended_seasons")
        self.assertTrue(error["message"].startswith('Trip "Barbaresco":'))
        self.assertEqual(error["suggestion"], "Use only: Primavera, Estate, Autunno, Inverno (case sensitive)")
        self.assertIn('"recommended_seasons"', error["example"])

    def test_job_with_no_created_trip_fails(self):
        archive = make_zip({"viaggi.json": json.dumps(trip_payload("Senza tema", theme=""))})

        response = self._upload(archive)
        status = self._wait_until_complete(response.json()["status_url"])

        self.assertEqual(status["status"], "failed")
        self.assertEqual(status["progress"]["remaining"], 1)
        self.assertIn("Missing required field", status["errors"][0]["message"])

    def test_rejects_non_zip_upload(self):
        response = self._upload(b"plain text", filename="trips.txt")
        self.assertEqual(response.status_code, 400)
        self.assertIn(".zip", response.json()["detail"])

    def test_rejects_corrupt_archive(self):
        response = self._upload(b"definitely not a zip")
        self.assertEqual(response.status_code, 400)
        self.assertIn("Invalid ZIP archive", response.json()["detail"])

    def test_rejects_archive_without_metadata(self):
        response = self._upload(make_zip({"media/a.jpg": b"jpg"}))
        self.assertEqual(response.status_code, 400)
        detail = response.json()["detail"]
        self.assertIn("Invalid archive structure", detail)
        self.assertIn("viaggi.json file missing", detail)

    def test_rejects_oversized_upload(self):
        with mock.patch.object(self.batch_api, "MAX_ARCHIVE_BYTES", 16):
            response = self._upload(make_zip({"viaggi.json": json.dumps(trip_payload("Grande"))}))
        self.assertEqual(response.status_code, 400)
        self.assertIn("Archive too large", response.json()["detail"])

    def test_owner_is_required(self):
        response = self.client.post(
            "/api/trips/batch",
            files={"file": ("trips.zip", make_zip({"viaggi.json": "{}"}), "application/zip")},
        )
        self.assertEqual(response.status_code, 422)

    def test_unknown_job_returns_404(self):
        response = self.client.get("/api/trips/batch/status/batch_unknown")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"], "Job not found or expired")

    def test_template_is_a_valid_archive(self):
        response = self.client.get("/api/trips/batch/template")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers["content-type"], "application/zip")
        self.assertIn("batch-trip-template.zip", response.headers["content-disposition"])

        with load_archive(response.content) as handle:
            self.assertEqual(validate_structure(handle), [])
            self.assertEqual(validate_folder_structure(handle), [])
            data = TripParser(handle, parse_metadata_document(handle)).parse()

        trip = data.trips[0]
        self.assertEqual(len(trip.stages), 2)
        self.assertIsNotNone(trip.gpx_file)
        self.assertTrue(trip.media[0].is_hero)

    def test_template_imports_cleanly(self):
        template = self.client.get("/api/trips/batch/template").content

        response = self._upload(template, filename="batch-trip-template.zip")
        status = self._wait_until_complete(response.json()["status_url"])

        self.assertEqual(status["status"], "completed")
        self.assertEqual(status["warnings"], [])
        self.assertEqual(status["errors"], [])

    def test_cleanup_endpoint(self):
        archive = make_zip({"viaggi.json": json.dumps(trip_payload("Da pulire"))})
        job = self._upload(archive).json()
        self._wait_until_complete(job["status_url"])

        response = self.client.delete("/api/trips/batch/jobs", params={"max_age_hours": 24})
        self.assertEqual(response.json(), {"deleted": 0, "max_age_hours": 24})

        response = self.client.delete("/api/trips/batch/jobs", params={"max_age_hours": 0})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["deleted"], 1)
        self.assertEqual(self.client.get(job["status_url"]).status_code, 404)

        response = self.client.delete("/api/trips/batch/jobs", params={"max_age_hours": -1})
        self.assertEqual(response.status_code, 422)


if __name__ == "__main__":
    unittest.main()

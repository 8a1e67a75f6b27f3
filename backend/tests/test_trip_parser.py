from __future__ import annotations

import io
import json
import sys
import unittest
import zipfile
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from archive_reader import load_archive  # noqa: E402
from batch_errors import TripContentError, TripStructureError  # noqa: E402
from trip_metadata import parse_metadata_document  # noqa: E402
from trip_parser import TripParser  # noqa: E402
from utils import slugify, title_from_folder  # noqa: E402


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
        "destination": "Alps",
        "theme": "Mountains",
        "recommended_seasons": ["Estate"],
    }
    payload.update(overrides)
    return payload


def open_parser(files: dict[str, bytes | str]):
    handle = load_archive(make_zip(files))
    return handle, TripParser(handle, parse_metadata_document(handle))


class SingleTripParserTests(unittest.TestCase):
    def test_stages_are_paired_with_folders_by_position(self):
        metadata = trip_payload(
            "Dolomiti",
            stages=[
                {"title": "Bolzano - Ortisei", "duration": "2h"},
                {"description": "No title here"},
            ],
        )
        handle, parser = open_parser(
            {
                "viaggi.json": json.dumps(metadata),
                "main.gpx": "<gpx>main</gpx>",
                "tappe/02-ortisei-cortina/tappa.gpx": "<gpx>2</gpx>",
                "tappe/01-bolzano-ortisei/tappa.gpx": "<gpx>1</gpx>",
                "tappe/03-cortina-dobbiaco/media/a.jpg": b"jpg",
            }
        )
        with handle:
            data = parser.parse()

        trip = data.trips[0]
        self.assertEqual(trip.title, "Dolomiti")
        self.assertEqual(trip.gpx_file.data, b"<gpx>main</gpx>")
        self.assertIsNone(trip.folder_name)
        self.assertEqual([stage.order_index for stage in trip.stages], [0, 1, 2])
        self.assertEqual(
            [stage.title for stage in trip.stages],
            ["Bolzano - Ortisei", "Ortisei Cortina", "Cortina Dobbiaco"],
        )
        self.assertEqual(trip.stages[0].duration, "2h")
        self.assertEqual(trip.stages[1].description, "No title here")
        self.assertEqual(trip.stages[0].gpx_file.filename, "tappa.gpx")
        self.assertIsNone(trip.stages[2].gpx_file)
        self.assertEqual(len(trip.stages[2].media), 1)
        self.assertEqual(trip.duration_days, 3)

    def test_declared_stage_without_folder_fails(self):
        metadata = trip_payload("Dolomiti", stages=[{"title": "A"}, {"title": "B"}])
        handle, parser = open_parser(
            {
                "viaggi.json": json.dumps(metadata),
                "tappe/01-a/tappa.gpx": "<gpx/>",
            }
        )
        with handle, self.assertRaises(TripStructureError) as ctx:
            parser.parse()
        self.assertIn("Missing folder for stage 2", str(ctx.exception))

    def test_media_discovery_sorts_filters_and_flags_hero(self):
        handle, parser = open_parser(
            {
                "viaggi.json": json.dumps(trip_payload("Media")),
                "media/c-video.mp4": b"mp4",
                "media/b-photo.PNG": b"png",
                "media/a-photo.jpg": b"",
                "media/notes.txt": b"text",
                "media/nested/d.jpg": b"jpg",
            }
        )
        with handle:
            trip = parser.parse_trip(0)

        self.assertEqual([item.filename for item in trip.media], ["b-photo.PNG", "c-video.mp4"])
        self.assertEqual([item.is_hero for item in trip.media], [True, False])
        self.assertEqual(trip.media[0].content_type, "image/png")
        self.assertEqual(trip.media[1].content_type, "video/mp4")
        self.assertTrue(all(item.size > 0 for item in trip.media))

    def test_video_first_does_not_take_hero(self):
        handle, parser = open_parser(
            {
                "viaggi.json": json.dumps(trip_payload("Media")),
                "media/a.mov": b"mov",
                "media/b.webp": b"webp",
            }
        )
        with handle:
            trip = parser.parse_trip(0)
        self.assertEqual([item.is_hero for item in trip.media], [False, True])

    def test_trip_without_stages_lasts_one_day(self):
        handle, parser = open_parser({"viaggi.json": json.dumps(trip_payload("Short"))})
        with handle:
            trip = parser.parse_trip(0)
        self.assertEqual(trip.stages, [])
        self.assertEqual(trip.duration_days, 1)


class MultiTripParserTests(unittest.TestCase):
    def _files(self) -> dict[str, bytes | str]:
        payload = {
            "viaggi": [
                trip_payload("Primo"),
                trip_payload("Secondo", characteristics=["Volo"]),
                trip_payload("Terzo"),
            ]
        }
        return {
            "viaggi.json": json.dumps(payload),
            "01-primo/main.gpx": "<gpx>1</gpx>",
            "01-primo/tappe/01-a/tappa.gpx": "<gpx/>",
            "02-secondo/media/a.jpg": b"jpg",
            "03-terzo/media/a.jpg": b"jpg",
        }

    def test_trips_are_paired_with_numbered_folders(self):
        handle, parser = open_parser(self._files())
        with handle:
            first = parser.parse_trip(0)
            third = parser.parse_trip(2)

        self.assertEqual(parser.trip_count, 3)
        self.assertEqual(first.folder_name, "01-primo")
        self.assertEqual(first.gpx_file.data, b"<gpx>1</gpx>")
        self.assertEqual(len(first.stages), 1)
        self.assertEqual(third.folder_name, "03-terzo")

    def test_invalid_trip_fails_alone(self):
        handle, parser = open_parser(self._files())
        with handle:
            with self.assertRaises(TripContentError):
                parser.parse_trip(1)
            self.assertEqual(parser.parse_trip(2).title, "Terzo")

    def test_parse_raises_on_first_invalid_trip(self):
        handle, parser = open_parser(self._files())
        with handle, self.assertRaises(TripContentError):
            parser.parse()

    def test_missing_trip_folder_fails(self):
        files = self._files()
        del files["03-terzo/media/a.jpg"]
        handle, parser = open_parser(files)
        with handle, self.assertRaises(TripStructureError) as ctx:
            parser.parse_trip(2)
        self.assertIn("Missing folder for trip 3", str(ctx.exception))


class NamingHelperTests(unittest.TestCase):
    def test_title_from_folder(self):
        self.assertEqual(title_from_folder("01-bolzano-ortisei"), "Bolzano Ortisei")
        self.assertEqual(title_from_folder("12-passo--giau"), "Passo Giau")
        self.assertIsNone(title_from_folder("bolzano"))

    def test_slugify(self):
        self.assertEqual(slugify("Giro delle Dolomiti"), "giro-delle-dolomiti")
        self.assertEqual(slugify("  Città & Passi: Estate 2024! "), "citta-passi-estate-2024")
        self.assertEqual(slugify("snake_case__title"), "snake-case-title")
        self.assertEqual(slugify("!!!"), "")


if __name__ == "__main__":
    unittest.main()

"""
Example batch archive offered for download.

The archive is a valid single-trip import: importing it unchanged creates one
trip with two stages.
"""

import base64
import io
import json
import zipfile

from models import CHARACTERISTIC_OPTIONS, RECOMMENDED_SEASONS

TEMPLATE_FILENAME = "batch-trip-template.zip"

# 1x1 PNG, enough to exercise the media pipeline.
PLACEHOLDER_IMAGE = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="
)

EXAMPLE_TRIP = {
    "title": "Giro delle Dolomiti - Esempio",
    "summary": (
        "Un viaggio di esempio attraverso le Dolomiti, "
        "utile per provare il caricamento batch."
    ),
    "destination": "Dolomiti, Trentino-Alto Adige",
    "theme": "Montagna e natura",
    "characteristics": ["Curve strette", "Bel paesaggio", "Interesse storico-culturale"],
    "recommended_seasons": ["Estate", "Autunno"],
    "tags": ["dolomiti", "montagna", "esempio"],
    "travelDate": "2024-07-15",
    "stages": [
        {
            "title": "Bolzano - Ortisei",
            "description": "Prima tappa attraverso la Val Gardena.",
            "routeType": "Strada statale",
            "duration": "2 ore",
        },
        {
            "title": "Ortisei - Cortina d'Ampezzo",
            "description": "Seconda tappa verso la regina delle Dolomiti.",
            "routeType": "Strada statale e provinciale",
            "duration": "1.5 ore",
        },
    ],
}

ROUTE_POINTS = [
    ("Bolzano", 46.4983, 11.3548, 262),
    ("Ortisei", 46.5784, 11.6751, 1236),
    ("Cortina d'Ampezzo", 46.5369, 12.1389, 1224),
]

STAGE_FOLDERS = ["01-bolzano-ortisei", "02-ortisei-cortina"]


def build_gpx(name: str, points: list[tuple[str, float, float, int]]) -> str:
    track_points = "\n".join(
        f'      <trkpt lat="{lat}" lon="{lon}">\n'
        f"        <ele>{elevation}</ele>\n"
        f"        <name>{label}</name>\n"
        f"      </trkpt>"
        for label, lat, lon, elevation in points
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<gpx version="1.1" creator="Batch Trip Template" xmlns="http://www.topografix.com/GPX/1/1">\n'
        f"  <metadata>\n    <name>{name}</name>\n  </metadata>\n"
        f"  <trk>\n    <name>{name}</name>\n    <trkseg>\n{track_points}\n    </trkseg>\n  </trk>\n"
        "</gpx>\n"
    )


def build_readme() -> str:
    characteristics = "\n".join(f"   - {value}" for value in CHARACTERISTIC_OPTIONS)
    seasons = "\n".join(f"   - {value}" for value in RECOMMENDED_SEASONS)
    return (
        "# Batch trip upload template\n\n"
        "## Layout\n"
        "- viaggi.json: trip metadata (required)\n"
        "- main.gpx: main GPX track (optional)\n"
        "- media/: trip images and videos; the first image (alphabetical) is the hero image\n"
        "- tappe/: one numbered folder per stage (01-name, 02-name, ...), each with\n"
        "  tappa.gpx and a media/ folder\n\n"
        "For several trips in one archive, put {\"viaggi\": [...]} in viaggi.json and\n"
        "one numbered folder per trip (01-first-trip/, 02-second-trip/) next to it.\n\n"
        "## Rules\n"
        f"1. Allowed characteristics:\n{characteristics}\n\n"
        f"2. Allowed recommended_seasons (at least one):\n{seasons}\n\n"
        "3. Supported media: JPG, JPEG, PNG, WEBP images and MP4, MOV, AVI videos\n"
        "4. Maximum archive size: 100MB\n"
    )


def build_template_archive() -> bytes:
    memory_file = io.BytesIO()
    with zipfile.ZipFile(memory_file, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("viaggi.json", json.dumps(EXAMPLE_TRIP, indent=2, ensure_ascii=False))
        zf.writestr("README.txt", build_readme())
        zf.writestr("main.gpx", build_gpx("Giro delle Dolomiti", ROUTE_POINTS))
        zf.writestr("media/hero-example.png", PLACEHOLDER_IMAGE)

        for index, folder in enumerate(STAGE_FOLDERS):
            stage = EXAMPLE_TRIP["stages"][index]
            zf.writestr(
                f"tappe/{folder}/tappa.gpx",
                build_gpx(stage["title"], ROUTE_POINTS[index:index + 2]),
            )
            zf.writestr(f"tappe/{folder}/media/stage{index + 1}-photo.png", PLACEHOLDER_IMAGE)

    return memory_file.getvalue()

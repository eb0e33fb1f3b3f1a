import httpx
import pytest_asyncio
from fastapi import FastAPI

from config import Settings
from conftest import FakeGenerator, make_track
from models import QualityResult
from server import app, build_services
from services.audio_loader import AudioFallbackLoader
from services.library_cache import LibraryCache


class PassingVerifier:
    async def verify(self, audio_url, thresholds):
        return QualityResult(passes=True, quality_score=88)


@pytest_asyncio.fixture
async def client(tmp_path, recorded_sleep):
    tracks = [make_track(i, type="remix" if i % 2 else "generated") for i in range(16)]
    generator = FakeGenerator(tracks=tracks, single={"rifussion-jazz-calm-1": make_track(99, id="rifussion-jazz-calm-1")})
    audio_routes = {"https://cdn.test/a.mp3": b"audio-bytes"}

    def audio_handler(request):
        body = audio_routes.get(str(request.url))
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body)

    app.state.generator = generator
    app.state.verifier = PassingVerifier()
    app.state.library = LibraryCache(generator)
    app.state.audio_loader = AudioFallbackLoader(
        client=httpx.AsyncClient(transport=httpx.MockTransport(audio_handler)),
        sleep=recorded_sleep,
        release_delay=0,
        download_dir=tmp_path,
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.state.audio_loader.cleanup()


async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}


async def test_library_route_filters_and_uses_wire_names(client):
    resp = await client.get("/api/library", params={"filter": "generated", "limit": 3})
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 8
    assert len(data["tracks"]) == 3
    assert data["degraded"] is False
    first = data["tracks"][0]
    assert first["type"] == "generated"
    assert {"audioUrl", "dateCreated", "qualityScore"} <= set(first)


async def test_remix_history_route_sorts(client):
    resp = await client.get("/api/remix-history", params={"filter": "a-z"})
    titles = [t["title"] for t in resp.json()["tracks"]]
    assert len(titles) == 8
    assert titles == sorted(titles)
    assert all(t.endswith(" (Remix)") for t in titles)


async def test_track_routes(client):
    await client.get("/api/library")
    resp = await client.get("/api/tracks/track-2")
    assert resp.status_code == 200
    assert resp.json()["id"] == "track-2"

    resp = await client.get("/api/tracks/rifussion-jazz-calm-1")
    assert resp.status_code == 200

    resp = await client.get("/api/tracks/unknown")
    assert resp.status_code == 404


async def test_quality_route(client):
    await client.get("/api/library")
    resp = await client.get("/api/tracks/track-1/quality")
    data = resp.json()
    assert data["isQualityVerified"] is True
    assert data["qualityScore"] == 88
    assert data["track"]["id"] == "track-1"

    resp = await client.get("/api/tracks/unknown/quality")
    assert resp.json()["issues"] == ["Track not found"]


async def test_catalog_routes(client):
    assert "house" in (await client.get("/api/genres")).json()["items"]
    assert "calm" in (await client.get("/api/moods")).json()["items"]


async def test_audio_lifecycle(client):
    resp = await client.post(
        "/api/audio/song/preload",
        json={"primary_url": "https://cdn.test/missing.mp3", "fallback_urls": ["https://cdn.test/a.mp3"]},
    )
    assert resp.json() == {"id": "song", "loaded": True, "progress": 100, "error": None}

    resp = await client.post("/api/audio/song/play")
    assert resp.json()["playing"] is True
    assert resp.json()["src"] == "https://cdn.test/a.mp3"

    resp = await client.post("/api/audio/song/pause")
    assert resp.json()["playing"] is False

    resp = await client.get("/api/audio/song/download", params={"filename": "mix"})
    assert resp.status_code == 200
    assert resp.content == b"audio-bytes"
    assert 'filename="mix.mp3"' in resp.headers["content-disposition"]

    resp = await client.delete("/api/audio/")
    assert resp.status_code == 200
    assert (await client.get("/api/audio/song/status")).json()["loaded"] is False


async def test_audio_errors(client):
    resp = await client.post(
        "/api/audio/song/preload",
        json={"primary_url": "https://cdn.test/missing.mp3"},
    )
    data = resp.json()
    assert data["loaded"] is False
    assert "after trying all URLs" in data["error"]

    assert (await client.post("/api/audio/song/play")).status_code == 404
    assert (await client.get("/api/audio/song/download")).status_code == 404


def test_build_services_wires_verifier_into_generation(tmp_path):
    single = FastAPI()
    build_services(single, Settings(download_dir=tmp_path))
    assert single.state.generator.verifier is None

    retrying = FastAPI()
    build_services(retrying, Settings(download_dir=tmp_path, generation_quality_attempts=3))
    assert retrying.state.generator.verifier is retrying.state.verifier
    assert retrying.state.generator.quality_attempts == 3

import json

import httpx
import pytest
from fastapi.testclient import TestClient

import database
import main
from dataservice import DataService, FallbackStorage
from schemas import Frame, Sunglasses

SIZE = {"lens_width": 50, "bridge_width": 18, "temple_length": 140}


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def data_dirs(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "DATA_DIR", tmp_path / "data")
    monkeypatch.setattr(database, "IMAGES_DIR", tmp_path / "images")
    return tmp_path


@pytest.fixture
def api(data_dirs):
    with TestClient(main.app) as client:
        yield client


@pytest.fixture
def backend(data_dirs):
    """Test client rooted at /api, the way the data service addresses the server."""
    with TestClient(main.app, base_url="http://testserver/api") as client:
        yield client


@pytest.fixture
def storage(tmp_path, clock):
    return FallbackStorage(tmp_path / "fallback", clock=clock)


@pytest.fixture
def frames():
    return [
        Frame(id="frame-1", name="Classic Round", brand="Ray-Ban", color="Gold", price=150,
              gender="unisex", material="metal", shape="round", features=["Spring hinges"],
              frame_size=SIZE, images=["/images/frames/round-1.jpg", "/images/frames/round-2.jpg"]),
        Frame(id="frame-2", name="Urban Square", brand="Oakley", color="Matte Black", price=200,
              gender="men", material="acetate", shape="square", in_stock=False,
              features=["Lightweight"], frame_size=SIZE),
        Frame(id="frame-3", name="Soft Cat-Eye", brand="Vogue", color="Tortoise", price=90,
              gender="women", material="acetate", shape="cat-eye", category="computer",
              features=["Blue light filter"], frame_size=SIZE),
        Frame(id="frame-4", name="Titan Rim", brand="ray-ban", color="Silver", price=150,
              gender="men", material="titanium", shape="rectangle", frame_size=SIZE),
    ]


@pytest.fixture
def sunglasses():
    return [
        Sunglasses(id="sg-1", name="Aviator Polar", brand="Ray-Ban", price=199, frame_size=SIZE,
                   lens_features={"uv_protection": "100% UV400", "polarized": True}),
        Sunglasses(id="sg-2", name="Beach Tint", brand="Oakley", price=99, frame_size=SIZE,
                   lens_features={"uv_protection": "", "polarized": False, "tinted": True}),
        Sunglasses(id="sg-3", name="City Wayfarer", brand="Persol", price=149, frame_size=SIZE,
                   shape="wayfarer", lens_features={"uv_protection": "UV380", "polarized": False}),
    ]


@pytest.fixture
def service(backend, storage, frames):
    backend.post("/frames", json=[f.to_wire() for f in frames]).raise_for_status()
    return DataService(client=backend, storage=storage)


class FakeBackend:
    """In-memory stand-in for the REST API, for failure paths."""

    def __init__(self, collections=None):
        self.collections = collections or {}
        self.down = False
        self.fail_image_delete = False
        self.deleted = []
        self.calls = []
        self.before_response = None

    def __call__(self, request):
        self.calls.append((request.method, request.url.path))
        if self.down:
            raise httpx.ConnectError("backend down", request=request)
        if self.before_response is not None:
            self.before_response()
        name = request.url.path.rsplit("/", 1)[-1]
        if request.method == "GET" and name in self.collections:
            return httpx.Response(200, json=self.collections[name])
        if request.method == "POST" and name in self.collections:
            self.collections[name] = json.loads(request.content)
            return httpx.Response(200, json={"success": True})
        if request.method == "DELETE" and name == "delete-image":
            if self.fail_image_delete:
                return httpx.Response(500, json={"detail": "Failed to delete image"})
            self.deleted.append(json.loads(request.content)["imagePath"])
            return httpx.Response(200, json={"success": True})
        return httpx.Response(404, json={"detail": "Not Found"})


@pytest.fixture
def fake(frames):
    return FakeBackend({"frames": [f.to_wire() for f in frames]})


@pytest.fixture
def offline(fake, storage):
    client = httpx.Client(transport=httpx.MockTransport(fake), base_url="http://backend/api")
    with DataService(client=client, storage=storage) as service:
        yield service
    client.close()



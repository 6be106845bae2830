import json

import httpx
import pytest

import database
from dataservice import (
    CancelToken,
    DataService,
    DataServiceError,
    FallbackStorage,
    ImageFile,
    ImageStore,
    ImageValidationError,
    OperationCancelled,
    SaveOutcome,
)
from schemas import ContactFilters, Frame


def put_image(name):
    path = database.IMAGES_DIR / "frames" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"fake image")
    return path


# Reads and the cache

def test_get_reads_server_then_serves_cache_until_invalidated(service, backend, frames):
    assert [f.id for f in service.frames.get()] == ["frame-1", "frame-2", "frame-3", "frame-4"]
    backend.post("/frames", json=[frames[0].to_wire()]).raise_for_status()
    assert len(service.frames.get()) == 4
    service.frames.invalidate()
    assert [f.id for f in service.frames.get()] == ["frame-1"]


def test_successful_save_empties_the_cache(service, frames):
    outcome = service.frames.save(frames[:2])
    assert outcome is SaveOutcome.PERSISTED
    assert service.frames.cached is None
    assert len(service.frames.get()) == 2


def test_get_by_id(service):
    assert service.frames.get_by_id("frame-3").name == "Soft Cat-Eye"
    assert service.frames.get_by_id("frame-99") is None


def test_offline_read_without_fallback_is_empty(offline, fake):
    fake.down = True
    assert offline.frames.get() == []
    assert offline.company.get() is None


# Create, update, delete

def test_create_assigns_prefixed_id_and_mirrors_main_image(service):
    created = service.frames.create({
        "name": "New Line",
        "brand": "Zeiss",
        "price": 120,
        "frame_size": {"lens_width": 52, "bridge_width": 18, "temple_length": 145},
        "images": ["/images/frames/a.jpg", "/images/frames/b.jpg"],
    })
    assert created.id.startswith("frame-")
    assert created.image_url == "/images/frames/a.jpg"
    stored = service.frames.get_by_id(created.id)
    assert stored is not None
    assert stored.images == ["/images/frames/a.jpg", "/images/frames/b.jpg"]


def test_update_releases_only_dropped_images(service):
    kept = put_image("round-2.jpg")
    dropped = put_image("round-1.jpg")
    result = service.frames.update("frame-1", {"images": ["/images/frames/round-2.jpg"], "price": 175})
    assert result.primary_ok
    assert result.outcome is SaveOutcome.PERSISTED
    assert result.side_effect_errors == []
    assert not dropped.exists()
    assert kept.exists()
    stored = service.frames.get_by_id("frame-1")
    assert stored.price == 175
    assert stored.image_url == "/images/frames/round-2.jpg"


def test_setting_main_image_keeps_the_gallery(service):
    first, second = put_image("round-1.jpg"), put_image("round-2.jpg")
    result = service.frames.update("frame-1", {"image_url": "/images/frames/new.jpg"})
    assert result.primary_ok
    assert result.item.images == ["/images/frames/new.jpg", "/images/frames/round-1.jpg", "/images/frames/round-2.jpg"]
    assert first.exists() and second.exists()
    stored = service.frames.get_by_id("frame-1")
    assert stored.image_url == "/images/frames/new.jpg"
    assert len(stored.images) == 3


def test_promoting_a_gallery_image_reorders_without_releasing(offline, fake):
    result = offline.frames.update("frame-1", {"image_url": "/images/frames/round-2.jpg"})
    assert result.item.images == ["/images/frames/round-2.jpg", "/images/frames/round-1.jpg"]
    assert fake.deleted == []
    assert ("DELETE", "/api/delete-image") not in fake.calls


def test_clearing_images_clears_image_url(service):
    result = service.frames.update("frame-1", {"images": []})
    assert result.item.images == []
    assert result.item.image_url is None
    assert service.frames.get_by_id("frame-1").image_url is None


def test_update_of_missing_id_is_not_found(service):
    result = service.frames.update("frame-99", {"price": 1})
    assert not result
    assert result.not_found


def test_delete_releases_every_image(service):
    first, second = put_image("round-1.jpg"), put_image("round-2.jpg")
    result = service.frames.delete("frame-1")
    assert result.primary_ok
    assert not first.exists() and not second.exists()
    assert service.frames.get_by_id("frame-1") is None


def test_failed_image_release_does_not_fail_the_update(offline, fake):
    fake.fail_image_delete = True
    result = offline.frames.update("frame-1", {"images": []})
    assert result.primary_ok
    assert result.outcome is SaveOutcome.PERSISTED
    assert len(result.side_effect_errors) == 2
    assert fake.collections["frames"][0].get("images", []) == []


def test_release_reports_errors_whatever_the_error_body():
    bodies = iter([httpx.Response(500, json=["broken"]), httpx.Response(500, json="broken"),
                   httpx.Response(500, text="<html>oops</html>"), httpx.Response(403, json={"error": "Denied"})])
    client = httpx.Client(transport=httpx.MockTransport(lambda request: next(bodies)), base_url="http://backend/api")
    images = ImageStore(client)
    errors = [images.release_image("/images/frames/gone.jpg") for _ in range(4)]
    assert all(isinstance(error, DataServiceError) for error in errors)
    assert "oops" in str(errors[2])
    assert str(errors[3]).endswith("Denied")


def test_external_and_data_images_are_never_sent_for_deletion(offline, fake):
    assert offline.images.delete_image("https://cdn.example.com/x.jpg")
    assert offline.images.delete_image("data:image/png;base64,AAAA")
    assert fake.calls == []


# Fallback storage

def test_offline_save_falls_back_and_offers_download(offline, fake, storage, clock, frames):
    fake.down = True
    outcome = offline.frames.save(frames[:1])
    assert outcome is SaveOutcome.FALLBACK
    assert outcome.ok
    assert json.loads(storage.get_item("frames_data"))[0]["id"] == "frame-1"

    pending = offline.download_json("frames.json")
    assert pending is not None
    assert pending.path.exists()
    assert json.loads(pending.content)[0]["name"] == "Classic Round"

    offline.frames.invalidate()
    assert [f.id for f in offline.frames.get()] == ["frame-1"]

    clock.advance(5 * 60 + 1)
    assert offline.pending_downloads() == []
    assert not pending.path.exists()


def test_save_fails_when_fallback_is_unwritable(fake, tmp_path, frames):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    client = httpx.Client(transport=httpx.MockTransport(fake), base_url="http://backend/api")
    service = DataService(client=client, storage=FallbackStorage(blocker / "store"))
    fake.down = True
    assert service.frames.save(frames) is SaveOutcome.FAILED
    assert service.frames.create(frames[0].model_dump(exclude={"id"})) is None


def test_storage_dismiss_and_clear(storage):
    storage.set_item("frames_data", "[]")
    storage.prepare_download("frames.json", "[]")
    storage.dismiss("frames.json")
    assert storage.pending_downloads() == []
    storage.clear()
    assert storage.keys() == []


# Cancellation

def test_late_response_is_discarded(offline, fake):
    token = CancelToken()
    fake.before_response = token.cancel
    with pytest.raises(OperationCancelled):
        offline.frames.get(token)
    assert offline.frames.cached is None


def test_cancelled_save_leaves_no_optimistic_cache(offline, fake, frames):
    token = CancelToken()
    fake.before_response = token.cancel
    with pytest.raises(OperationCancelled):
        offline.frames.save(frames[:1], token)
    assert offline.frames.cached is None


# Company profile

def test_update_section_merges_dict_sections(service):
    outcome = service.company.update_section("company_info", {"tagline": "Frames for everyone"})
    assert outcome is SaveOutcome.PERSISTED
    company = service.company.get()
    assert company.company_info.name == "Optical Store"
    assert company.company_info.tagline == "Frames for everyone"


def test_update_section_replaces_list_sections(service):
    service.company.update_section("services", [{"id": "service-1", "name": "Repairs"}])
    assert [s.name for s in service.company.get().services] == ["Repairs"]


# Images

def test_upload_stores_file_on_server(service, data_dirs):
    path = service.images.upload_image(ImageFile("My Photo.JPG", b"\x89PNG data", "image/png"))
    assert path.startswith("/images/frames/")
    assert path.endswith("_my_photo.jpg")
    assert (data_dirs / "images" / path[len("/images/"):]).read_bytes() == b"\x89PNG data"


def test_upload_validation_happens_before_any_request(offline, fake):
    with pytest.raises(ImageValidationError):
        offline.images.upload_image(ImageFile("notes.txt", b"hello", "text/plain"))
    with pytest.raises(ImageValidationError):
        offline.images.upload_single(ImageFile("huge.png", b"x" * (5 * 1024 * 1024 + 1), "image/png"))
    with pytest.raises(ImageValidationError):
        offline.images.upload_single(ImageFile("scan.bmp", b"x", "image/bmp"))
    assert fake.calls == []


def test_upload_falls_back_to_data_uri(offline, fake):
    fake.down = True
    path = offline.images.upload_image(ImageFile("a.png", b"abc", "image/png"))
    assert path == "data:image/png;base64,YWJj"


def test_batch_upload_reports_bad_files_and_keeps_good_ones(service):
    result = service.images.upload_images([
        ImageFile("good.png", b"png", "image/png"),
        ImageFile("bad.txt", b"txt", "text/plain"),
    ])
    assert len(result.paths) == 1
    assert result.errors and result.errors[0].startswith("bad.txt")
    with pytest.raises(ImageValidationError):
        service.images.upload_images([ImageFile("x.png", b"x", "image/png")] * 2, existing=4)


# Inquiries and contacts

def test_inquiry_lifecycle(service):
    created = service.inquiries.create({
        "customer_info": {"name": "Ana", "email": "ana@example.com"},
        "product": {"id": "frame-1", "name": "Classic Round", "brand": "Ray-Ban", "type": "frame", "price": 150},
        "message": "Is this available in blue?",
    })
    assert created.id.startswith("INQ-")
    assert (created.status, created.priority) == ("new", "medium")
    updated = service.inquiries.update(created.id, {"status": "in-progress"})
    assert updated.status == "in-progress"
    assert service.inquiries.stats().in_progress == 1
    assert [i.id for i in service.inquiries.list()] == [created.id]
    assert service.inquiries.delete(created.id)
    assert not service.inquiries.delete(created.id)


def test_contacts_list_filters_and_offline_fallback(service, fake, storage):
    for source in ("phone", "referral"):
        service.contacts.create({
            "customer_info": {"name": "Ben", "email": "ben@example.com"},
            "message": "Call me",
            "source": source,
        })
    assert [c.source for c in service.contacts.list(ContactFilters(source="phone"))] == ["phone"]
    assert len(service.contacts.list()) == 2

    # same client object, backend now unreachable
    client = httpx.Client(transport=httpx.MockTransport(fake), base_url="http://backend/api")
    fake.down = True
    service.contacts.client = client
    assert len(service.contacts.list()) == 2
    assert service.contacts.stats().total == 2


def test_frame_model_migrates_legacy_image_url():
    frame = Frame.model_validate({
        "id": "frame-legacy", "name": "Old", "brand": "X", "price": 10,
        "frameSize": {"lens_width": 50, "bridge_width": 18, "temple_length": 140},
        "imageUrl": "/images/frames/old.jpg",
    })
    assert frame.images == ["/images/frames/old.jpg"]


def test_delete_removes_record_even_when_every_release_fails(offline, fake):
    fake.collections["frames"][0]["images"] = ["/images/frames/1.jpg", "/images/frames/2.jpg", "/images/frames/3.jpg"]
    fake.fail_image_delete = True
    result = offline.frames.delete("frame-1")
    assert result.primary_ok
    assert len(result.side_effect_errors) == 3
    assert [call for call in fake.calls if call == ("DELETE", "/api/delete-image")] == [("DELETE", "/api/delete-image")] * 3
    assert all(f["id"] != "frame-1" for f in fake.collections["frames"])


def test_refresh_all_refetches_every_collection(service, backend, frames):
    service.frames.get()
    service.company.get()
    backend.post("/frames", json=[frames[2].to_wire()]).raise_for_status()
    service.refresh_all()
    assert [f.id for f in service.frames.cached] == ["frame-3"]
    assert service.sunglasses.cached is not None
    assert service.company.cached.company_info.name == "Optical Store"

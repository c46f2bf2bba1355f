import asyncio

import pytest
from PIL import Image as PILImage

import pipeline
from errors import FileMissing, NotFound
from models import Photo
from pipeline import UploadedFile
from tests.conftest import heic_bytes, image_bytes
from utils import thumbnail_name


def run_ingest(realm, *uploads):
    return asyncio.run(pipeline.ingest(realm, list(uploads)))


def test_ingest_jpeg(realm):
    report = run_ingest(realm, UploadedFile("Beach.JPG", "image/jpeg", image_bytes((1200, 800))))
    assert report.failures == []
    [photo] = report.photos
    assert photo.name == "Beach.JPG"
    assert photo.mime_type == "image/jpeg"
    assert photo.filename.endswith(".jpg")
    assert photo.filename != "Beach.JPG"
    assert realm.asset_path(photo.filename).exists()
    assert [p.id for p in realm.list_photos()] == [photo.id]

    thumb = realm.thumbnail_path(photo.filename)
    assert thumb.name == thumbnail_name(photo.filename)
    with PILImage.open(thumb) as im:
        assert im.format == "WEBP"
        assert im.size == (480, 320)


def test_thumbnail_never_upscales(realm):
    report = run_ingest(realm, UploadedFile("tiny.png", "image/png", image_bytes((100, 50), "PNG")))
    [photo] = report.photos
    assert photo.mime_type == "image/png"
    with PILImage.open(realm.thumbnail_path(photo.filename)) as im:
        assert im.size == (100, 50)


def test_ingest_heic_becomes_jpeg(realm):
    report = run_ingest(realm, UploadedFile("IMG_0001.HEIC", "image/heic", heic_bytes()))
    [photo] = report.photos
    assert photo.name == "IMG_0001.jpg"
    assert photo.mime_type == "image/jpeg"
    assert photo.filename.endswith(".jpg")
    path = realm.asset_path(photo.filename)
    assert photo.size == path.stat().st_size
    with PILImage.open(path) as im:
        assert im.format == "JPEG"
    leftovers = [p for p in realm.uploads_dir.iterdir() if p.suffix in (".heic", ".heif")]
    assert leftovers == []
    assert realm.has_thumbnail(photo.filename)


def test_heic_bytes_under_jpg_name_keep_their_asset(realm):
    report = run_ingest(realm, UploadedFile("IMG.jpg", "image/heic", heic_bytes()))
    [photo] = report.photos
    assert photo.mime_type == "image/jpeg"
    path = realm.asset_path(photo.filename)
    with PILImage.open(path) as im:
        assert im.format == "JPEG"
    assert realm.has_thumbnail(photo.filename)
    names = sorted(p.name for p in realm.uploads_dir.iterdir())
    assert names == sorted([photo.filename, thumbnail_name(photo.filename)])


def test_generic_content_type_falls_back_to_extension(realm):
    report = run_ingest(
        realm, UploadedFile("pic.png", "application/octet-stream", image_bytes((20, 20), "PNG"))
    )
    [photo] = report.photos
    assert photo.mime_type == "image/png"


def test_failed_conversion_is_isolated(realm):
    report = run_ingest(
        realm,
        UploadedFile("broken.heic", "image/heic", b"definitely not an image"),
        UploadedFile("ok.png", "image/png", image_bytes((64, 64), "PNG")),
    )
    assert [p.name for p in report.photos] == ["ok.png"]
    [failure] = report.failures
    assert failure.filename == "broken.heic"
    assert failure.error.code == "conversion_failed"
    names = sorted(p.name for p in realm.uploads_dir.iterdir())
    photo = report.photos[0]
    assert names == sorted([photo.filename, thumbnail_name(photo.filename)])


def test_unsupported_type_is_rejected(realm):
    report = run_ingest(realm, UploadedFile("notes.txt", "text/plain", b"hello"))
    assert report.photos == []
    assert report.failures[0].error.code == "unsupported_type"
    assert list(realm.uploads_dir.iterdir()) == []


def test_thumbnail_failure_is_not_fatal(realm):
    svg = b'<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10"/>'
    report = run_ingest(realm, UploadedFile("logo.svg", "image/svg+xml", svg))
    [photo] = report.photos
    assert photo.mime_type == "image/svg+xml"
    assert realm.asset_path(photo.filename).exists()
    assert not realm.has_thumbnail(photo.filename)


def test_results_keep_input_order(realm):
    names = [f"{i}.png" for i in range(4)]
    uploads = [UploadedFile(n, "image/png", image_bytes((20, 20), "PNG")) for n in names]
    report = run_ingest(realm, *uploads)
    assert [p.name for p in report.photos] == names
    assert len({p.filename for p in report.photos}) == 4


def test_remove_deletes_files_then_row(realm):
    [photo] = run_ingest(realm, UploadedFile("a.jpg", "image/jpeg", image_bytes())).photos
    pipeline.remove(realm, photo.id)
    assert realm.get_photo(photo.id) is None
    assert not realm.asset_path(photo.filename).exists()
    assert not realm.has_thumbnail(photo.filename)
    with pytest.raises(NotFound):
        pipeline.remove(realm, photo.id)


def test_remove_tolerates_missing_files(realm):
    [photo] = run_ingest(realm, UploadedFile("a.jpg", "image/jpeg", image_bytes())).photos
    realm.asset_path(photo.filename).unlink()
    realm.thumbnail_path(photo.filename).unlink()
    pipeline.remove(realm, photo.id)
    assert realm.list_photos() == []


def test_remove_drops_asset_repointed_mid_delete(realm, monkeypatch):
    realm.asset_path("5-x.heic").write_bytes(heic_bytes())
    realm.add_photo(Photo(id="x", name="x.heic", filename="5-x.heic", mime_type="image/heic"))
    original = pipeline.discard_asset
    swept = []

    def sweep_in_between(realm_, filename):
        original(realm_, filename)
        if filename == "5-x.heic" and not swept:
            # The HEIC sweep finishes after remove() read the row
            swept.append(filename)
            realm_.asset_path("5-x.jpg").write_bytes(image_bytes())
            assert realm_.replace_asset("x", "5-x.heic", filename="5-x.jpg")

    monkeypatch.setattr(pipeline, "discard_asset", sweep_in_between)
    pipeline.remove(realm, "x")
    assert swept == ["5-x.heic"]
    assert realm.get_photo("x") is None
    assert list(realm.uploads_dir.iterdir()) == []


def test_resolve_asset_distinguishes_missing_file(realm):
    [photo] = run_ingest(realm, UploadedFile("a.jpg", "image/jpeg", image_bytes())).photos
    found, path = pipeline.resolve_asset(realm, photo.id)
    assert found.id == photo.id and path.exists()
    path.unlink()
    with pytest.raises(FileMissing):
        pipeline.resolve_asset(realm, photo.id)
    with pytest.raises(NotFound):
        pipeline.resolve_asset(realm, "no-such-id")


def test_acceptance_rules():
    assert pipeline.is_accepted("x.bin", "image/png")
    assert pipeline.is_accepted("x.HEIC", "application/octet-stream")
    assert pipeline.is_accepted("x.avif", None)
    assert not pipeline.is_accepted("x.pdf", "application/pdf")
    assert pipeline.is_heic("photo.jpg", "image/heif")
    assert pipeline.jpeg_display_name("IMG.heic") == "IMG.jpg"
    assert pipeline.jpeg_display_name("noext") == "noext.jpg"

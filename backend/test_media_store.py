"""Inbound attachment downloads and stored media paths."""
import pytest

from sachetan.services import media_service
from sachetan.services.media_service import MediaStore


class FakeResponse:
    def __init__(self, chunks):
        self.chunks = chunks
        self.read = 0
        self.closed = False

    def raise_for_status(self):
        pass

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            self.read += 1
            yield chunk

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True


@pytest.fixture
def store(tmp_path):
    return MediaStore(media_dir=str(tmp_path), base_url="https://bot.example.com/")


def test_download_is_stored_under_inbound(store, tmp_path, monkeypatch):
    response = FakeResponse([b"\xff\xd8", b"jpeg-bytes"])
    monkeypatch.setattr(media_service.requests, "get", lambda *args, **kwargs: response)

    relative = store.download_inbound("https://api.twilio.com/media/ME1", "image/jpeg", "whatsapp:+919812345678")
    assert relative.startswith("inbound/9812345678_")
    assert relative.endswith(".jpg")
    assert (tmp_path / relative).read_bytes() == b"\xff\xd8jpeg-bytes"
    assert response.closed
    assert store.public_url(relative) == f"https://bot.example.com/media/{relative}"


def test_oversized_download_stops_reading_early(store, tmp_path, monkeypatch):
    monkeypatch.setattr(media_service, "MAX_DOWNLOAD_BYTES", 10)
    response = FakeResponse([b"x" * 8, b"x" * 8, b"x" * 8, b"x" * 8])
    monkeypatch.setattr(media_service.requests, "get", lambda *args, **kwargs: response)

    with pytest.raises(ValueError):
        store.download_inbound("https://api.twilio.com/media/ME2", "image/png", "whatsapp:+919812345678")
    assert response.read == 2
    assert response.closed
    assert not (tmp_path / "inbound").exists() or list((tmp_path / "inbound").iterdir()) == []


def test_delete_refuses_paths_outside_media_root(store, tmp_path):
    outside = tmp_path.parent / "keep.txt"
    outside.write_text("keep")
    assert store.delete("../keep.txt") is False
    assert outside.exists()

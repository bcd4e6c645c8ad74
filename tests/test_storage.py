"""
Tests for image storage and the owner image endpoints.
"""

import io

import pytest
from botocore.exceptions import ClientError

from app.studiofinder.db import session_scope
from app.studiofinder.modules.studios.models import StudioImage
from app.studiofinder.storage import LocalStorage, S3Storage, StorageError, storage_from_config

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def _upload(client, name="booth.png", data=PNG, content_type="image/png"):
    return client.post(
        "/api/user/images",
        data={"file": (io.BytesIO(data), name, content_type), "alt_text": "Vocal booth"},
        content_type="multipart/form-data",
    )


class TestLocalStorage:
    def test_round_trip(self, tmp_path):
        storage = LocalStorage(root=tmp_path)
        storage.put_bytes("studios/1/a.png", b"abc")
        with storage.open("/studios/1/a.png") as fh:
            assert fh.read() == b"abc"
        assert storage.public_url("studios/1/a.png") == "/media/studios/1/a.png"
        storage.delete("studios/1/a.png")
        storage.delete("studios/1/a.png")
        assert not (tmp_path / "studios/1/a.png").exists()

    @pytest.mark.parametrize("key", ["../etc/passwd", "studios/../../x", "", "  "])
    def test_rejects_bad_keys(self, tmp_path, key):
        with pytest.raises(StorageError):
            LocalStorage(root=tmp_path).put_bytes(key, b"x")


class TestConfig:
    def test_defaults_to_local(self, tmp_path):
        assert isinstance(storage_from_config({"LOCAL_STORAGE_ROOT": str(tmp_path)}), LocalStorage)

    def test_s3_needs_bucket(self):
        with pytest.raises(StorageError):
            storage_from_config({"STORAGE_BACKEND": "s3"})

    def test_s3_urls(self):
        storage = storage_from_config({"STORAGE_BACKEND": "s3", "S3_BUCKET": "vosf", "S3_ENDPOINT": "lon1.digitaloceanspaces.com"})
        assert storage.public_url("studios/1/a.png") == "https://vosf.lon1.digitaloceanspaces.com/studios/1/a.png"
        cdn = S3Storage("lon1.digitaloceanspaces.com", "lon1", "vosf", "k", "s", cdn_base_url="https://cdn.example.com/")
        assert cdn.public_url("/studios/1/a.png") == "https://cdn.example.com/studios/1/a.png"


class FailingS3Client:
    def put_object(self, **_kwargs):
        raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")

    def get_object(self, **_kwargs):
        raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")


class TestS3Errors:
    def test_wrapped(self, monkeypatch):
        monkeypatch.setattr("app.studiofinder.storage.boto3.client", lambda *a, **kw: FailingS3Client())
        storage = S3Storage("lon1.digitaloceanspaces.com", "lon1", "vosf", "k", "s")
        with pytest.raises(StorageError):
            storage.put_bytes("studios/1/a.png", b"x")
        with pytest.raises(FileNotFoundError):
            storage.open("studios/1/a.png")


class TestImageApi:
    def test_upload_serve_delete(self, app, client, login, make_member):
        _, studio_id = make_member("photo_vo")
        login(client, email="photo_vo@example.com", password="Passw0rd!")

        r = _upload(client)
        assert r.status_code == 201
        image = r.json["image"]
        assert image["sort_order"] == 0
        assert image["url"].startswith(f"/media/studios/{studio_id}/")

        served = client.get(image["url"])
        assert served.status_code == 200
        assert served.data == PNG

        with session_scope(app) as s:
            row = s.get(StudioImage, image["id"])
            assert row.alt_text == "Vocal booth"
            assert row.size_bytes == len(PNG)

        assert client.delete(f"/api/user/images/{image['id']}").status_code == 200
        assert client.get(image["url"]).status_code == 404
        with session_scope(app) as s:
            assert s.query(StudioImage).count() == 0

    def test_rejects_other_types(self, client, login, make_member):
        make_member("photo_vo")
        login(client, email="photo_vo@example.com", password="Passw0rd!")
        r = _upload(client, name="notes.pdf", data=b"%PDF-1.4", content_type="application/pdf")
        assert r.status_code == 400
        assert r.json["details"] == ["Images must be JPEG, PNG or WebP"]

    def test_basic_tier_image_limit(self, client, login, make_member):
        make_member("photo_vo", tier="BASIC")
        login(client, email="photo_vo@example.com", password="Passw0rd!")
        assert _upload(client, name="one.png").status_code == 201
        assert _upload(client, name="two.png").status_code == 201
        r = _upload(client, name="three.png")
        assert r.status_code == 400
        assert r.json["details"] == ["Your membership allows up to 2 images"]

    def test_cannot_delete_someone_elses_image(self, client, login, make_member):
        make_member("photo_vo")
        make_member("other_vo")
        login(client, email="photo_vo@example.com", password="Passw0rd!")
        image_id = _upload(client).json["image"]["id"]
        client.get("/auth/logout")
        login(client, email="other_vo@example.com", password="Passw0rd!")
        assert client.delete(f"/api/user/images/{image_id}").status_code == 404

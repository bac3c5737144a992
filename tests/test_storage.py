"""
Storage Tests
=============

Image processing and local uploads (avatars, featured images).
Run with: pytest tests/test_storage.py -v
"""

import io
import os

import pytest
from PIL import Image

from bassac.core.responses import BadRequestError
from bassac.core.sanitize import is_media_url
from bassac.core.storage import allowed_image, delete_file, local_upload_path, process_image


def image_bytes(size=(400, 200), fmt="PNG", mode="RGBA"):
    buf = io.BytesIO()
    Image.new(mode, size, (200, 30, 30, 255) if mode == "RGBA" else (200, 30, 30)).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def upload_dir(app, tmp_db_dir):
    folder = os.path.join(tmp_db_dir, "uploads")
    app.config["UPLOAD_FOLDER"] = folder
    return folder


def test_allowed_image():
    assert allowed_image("photo.JPG")
    assert not allowed_image("notes.txt")
    assert not allowed_image("noextension")


def test_process_image_downscales_and_converts():
    data, ext = process_image(image_bytes((2000, 1000)), max_width=1600)
    assert ext == "jpg"
    img = Image.open(io.BytesIO(data))
    assert img.size == (1600, 800)
    assert img.mode == "RGB"


def test_process_image_square_crop():
    data, _ = process_image(image_bytes((400, 200)), square=128)
    assert Image.open(io.BytesIO(data)).size == (128, 128)


def test_process_image_rejects_garbage():
    with pytest.raises(BadRequestError):
        process_image(b"definitely not an image")


@pytest.mark.parametrize("mode", ["I;16", "I", "F", "LA", "P", "CMYK"])
def test_process_image_handles_any_mode(mode):
    buf = io.BytesIO()
    fmt = "TIFF" if mode in ("F", "CMYK") else "PNG"
    Image.new(mode, (50, 50)).save(buf, format=fmt)

    data, ext = process_image(buf.getvalue())
    assert ext == "jpg"
    img = Image.open(io.BytesIO(data))
    assert img.format == "JPEG"
    assert img.mode == "RGB"


def test_avatar_upload_and_replace(client, make_user, upload_dir):
    _, headers = make_user()

    response = client.post("/api/users/avatar", headers=headers, content_type="multipart/form-data",
                           data={"avatar": (io.BytesIO(image_bytes()), "me.png")})
    assert response.status_code == 200
    first = response.get_json()["data"]["avatar"]
    assert first.startswith("/uploads/avatars/")
    assert os.path.isfile(os.path.join(upload_dir, first[len("/uploads/"):]))

    served = client.get(first)
    assert served.status_code == 200
    served.close()

    response = client.post("/api/users/avatar", headers=headers, content_type="multipart/form-data",
                           data={"avatar": (io.BytesIO(image_bytes()), "again.png")})
    second = response.get_json()["data"]["avatar"]
    assert second != first
    assert not os.path.exists(os.path.join(upload_dir, first[len("/uploads/"):]))


def test_avatar_rejects_wrong_type(client, make_user, upload_dir):
    _, headers = make_user()
    response = client.post("/api/users/avatar", headers=headers, content_type="multipart/form-data",
                           data={"avatar": (io.BytesIO(b"hello"), "notes.txt")})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Invalid file type"


def test_featured_image_upload(client, make_user, make_article, upload_dir):
    writer, headers = make_user("writer")
    article = make_article(writer, status="draft")
    response = client.post(f"/api/articles/{article['id']}/featured-image", headers=headers,
                           content_type="multipart/form-data",
                           data={"image": (io.BytesIO(image_bytes((1800, 900))), "cover.png")})
    assert response.status_code == 200
    url = response.get_json()["data"]["featured_image"]
    assert url.startswith("/uploads/articles/")
    assert delete_file(url) is True
    assert delete_file(url) is False


# ---------------------------------------------------------------------------
# Containment -- nothing outside the upload folder is ever touched
# ---------------------------------------------------------------------------

def test_delete_file_stays_inside_upload_folder(app, upload_dir, tmp_db_dir):
    victim = os.path.join(tmp_db_dir, "victim.txt")
    with open(victim, "w") as fh:
        fh.write("keep me")
    os.makedirs(upload_dir, exist_ok=True)

    for url in ("/uploads/../victim.txt", "/uploads/avatars/../../victim.txt", "/uploads/", "../victim.txt"):
        assert local_upload_path(url) is None
        assert delete_file(url) is False
    assert os.path.isfile(victim)

    kept = os.path.join(upload_dir, "avatars", "me.jpg")
    os.makedirs(os.path.dirname(kept))
    open(kept, "wb").close()
    assert local_upload_path("/uploads/avatars/me.jpg") == os.path.realpath(kept)
    assert delete_file("/uploads/avatars/me.jpg") is True


def test_spaces_delete_requires_configured_space(app):
    assert delete_file("https://evil.nyc3.digitaloceanspaces.com/uploads/a.jpg") is False


def test_media_url_rules():
    assert is_media_url("")
    assert is_media_url("/uploads/articles/cover.jpg")
    assert is_media_url("https://cdn.example.com/cover.jpg")
    assert not is_media_url("/uploads/../victim.txt")
    assert not is_media_url("/etc/passwd")
    assert not is_media_url("javascript:alert(1)")
    assert not is_media_url("//evil.example.com/x.jpg")
    assert not is_media_url(42)


def test_featured_image_traversal_is_rejected(client, make_user, make_article, upload_dir, tmp_db_dir):
    victim = os.path.join(tmp_db_dir, "victim.txt")
    with open(victim, "w") as fh:
        fh.write("keep me")
    writer, headers = make_user("writer")
    article = make_article(writer, status="draft")

    response = client.put(f"/api/articles/{article['id']}", headers=headers,
                          json={"featured_image": "/uploads/../victim.txt"})
    assert response.status_code == 422
    assert {e["field"] for e in response.get_json()["errors"]} == {"featured_image"}

    assert client.delete(f"/api/articles/{article['id']}", headers=headers).status_code == 200
    assert os.path.isfile(victim)

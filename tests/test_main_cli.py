import json
import os
import sys

import pytest
from PIL import Image

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import main


@pytest.fixture
def local_env(monkeypatch, tmp_path):
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("PHOTO_STORAGE_DIR", str(tmp_path / "store"))
    monkeypatch.setenv("PHOTO_DB_PATH", str(tmp_path / "photos.db"))
    monkeypatch.setenv("PHOTO_DOWNLOAD_DIR", str(tmp_path / "downloads"))
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    return tmp_path


def _write_jpeg(path, color=(10, 120, 60)):
    image = Image.new("RGB", (80, 60), color=color)
    image.save(path, format="JPEG")
    image.close()
    return path


def test_upload_list_stats_download_delete(local_env, capsys):
    first = _write_jpeg(local_env / "north.jpg")
    second = _write_jpeg(local_env / "south.jpg", color=(200, 30, 30))

    assert main.main(["upload", "diary-1", str(first), str(second), "--caption", "north.jpg=Formwork"]) == 0
    uploaded = capsys.readouterr().out
    assert "uploaded north.jpg" in uploaded
    assert "uploaded south.jpg" in uploaded

    assert main.main(["list", "diary-1", "--json"]) == 0
    rows = {row["file_name"]: row for row in json.loads(capsys.readouterr().out)}
    assert sorted(rows) == ["north.jpg", "south.jpg"]
    assert rows["north.jpg"]["caption"] == "Formwork"
    assert rows["south.jpg"]["caption"] is None

    assert main.main(["stats", "diary-1"]) == 0
    assert capsys.readouterr().out.startswith("2 photo(s)")

    assert main.main(["download", "diary-1", rows["south.jpg"]["id"]]) == 0
    assert (local_env / "downloads" / "south.jpg").exists()

    assert main.main(["delete", "diary-1", rows["north.jpg"]["id"], "--yes"]) == 0
    capsys.readouterr()
    assert main.main(["list", "diary-1", "--json"]) == 0
    remaining = json.loads(capsys.readouterr().out)
    assert [row["file_name"] for row in remaining] == ["south.jpg"]


def test_upload_rejects_non_images(local_env, capsys):
    notes = local_env / "notes.txt"
    notes.write_text("not a photo")

    assert main.main(["upload", "diary-1", str(notes)]) == 2
    assert "Please select image files only" in capsys.readouterr().err


def test_delete_unknown_photo(local_env, capsys):
    assert main.main(["delete", "diary-1", "missing", "--yes"]) == 1
    assert "not found" in capsys.readouterr().err


def test_empty_listing(local_env, capsys):
    assert main.main(["list", "diary-9"]) == 0
    assert "No photos yet" in capsys.readouterr().out


def test_invalid_caption_argument(local_env):
    with pytest.raises(SystemExit):
        main._parse_captions(["missing-separator"])


def test_upload_missing_file_is_clean_error(local_env, capsys):
    missing = local_env / "nowhere.jpg"

    assert main.main(["upload", "diary-1", str(missing)]) == 2
    err = capsys.readouterr().err
    assert "Cannot read" in err
    assert "nowhere.jpg" in err


def test_delete_prompts_for_confirmation(local_env, capsys, monkeypatch):
    photo = _write_jpeg(local_env / "east.jpg")
    assert main.main(["upload", "diary-1", str(photo)]) == 0
    capsys.readouterr()
    assert main.main(["list", "diary-1", "--json"]) == 0
    photo_id = json.loads(capsys.readouterr().out)[0]["id"]

    prompts = []
    answers = iter(["n", "yes"])

    def fake_input(message):
        prompts.append(message)
        return next(answers)

    monkeypatch.setattr("builtins.input", fake_input)

    assert main.main(["delete", "diary-1", photo_id]) == 1
    assert main.main(["delete", "diary-1", photo_id]) == 0
    assert prompts == ['Delete "east.jpg"? [y/N] '] * 2
    capsys.readouterr()
    assert main.main(["list", "diary-1", "--json"]) == 0
    assert json.loads(capsys.readouterr().out) == []

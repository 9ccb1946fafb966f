from __future__ import annotations

import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from uploads.errors import BatchTooLargeError, ValidationError
from uploads.intake import (
    MAX_BATCH_FILES,
    RejectionSummary,
    format_megabytes,
    process_files,
    summarize_names,
    validate_photo_file,
)
from uploads.models import SelectedFile

MB = 1024 * 1024


def _file(name: str, size: int = 10, mime_type: str = "image/jpeg") -> SelectedFile:
    return SelectedFile(name=name, data=b"x" * size, mime_type=mime_type, last_modified=0)


def test_all_valid_files_pass_in_order():
    files = [_file(f"img{i}.jpg") for i in range(3)]

    result = process_files(files)

    assert [f.name for f in result.valid_files] == ["img0.jpg", "img1.jpg", "img2.jpg"]
    assert result.rejection.is_empty
    assert result.rejection.message is None


def test_exactly_max_batch_is_accepted():
    files = [_file(f"img{i}.jpg") for i in range(MAX_BATCH_FILES)]

    result = process_files(files)

    assert len(result.valid_files) == MAX_BATCH_FILES


def test_batch_over_limit_is_rejected_whole():
    files = [_file(f"img{i}.jpg") for i in range(MAX_BATCH_FILES + 1)]

    with pytest.raises(BatchTooLargeError) as excinfo:
        process_files(files)

    assert str(excinfo.value) == "Maximum 20 photos can be uploaded at once"
    assert excinfo.value.count == 21
    assert isinstance(excinfo.value, ValidationError)


def test_only_non_images_rejected():
    files = [_file("notes.pdf", mime_type="application/pdf"), _file("a.txt", mime_type="text/plain")]

    with pytest.raises(ValidationError) as excinfo:
        process_files(files)

    assert str(excinfo.value) == "Please select image files only (JPG, PNG, WEBP)"


def test_empty_selection_rejected():
    with pytest.raises(ValidationError):
        process_files([])


def test_non_images_are_skipped_with_warning():
    files = [_file("a.jpg"), _file("b.pdf", mime_type="application/pdf")]

    result = process_files(files)

    assert [f.name for f in result.valid_files] == ["a.jpg"]
    assert result.rejection.non_image_count == 1
    assert result.rejection.message == "1 non-image file(s) skipped. Only images are allowed."


def test_oversized_files_listed_with_ellipsis():
    files = [_file("ok.jpg")] + [_file(f"big{i}.jpg", size=6 * MB) for i in range(4)]

    result = process_files(files)

    assert [f.name for f in result.valid_files] == ["ok.jpg"]
    assert result.rejection.message == "4 file(s) exceed 5MB limit: big0.jpg, big1.jpg, big2.jpg..."


def test_oversize_warning_wins_over_non_image_warning():
    files = [
        _file("ok.jpg"),
        _file("doc.pdf", mime_type="application/pdf"),
        _file("huge.png", size=6 * MB, mime_type="image/png"),
    ]

    result = process_files(files)

    assert result.rejection.messages() == [
        "1 non-image file(s) skipped. Only images are allowed.",
        "1 file(s) exceed 5MB limit: huge.png",
    ]
    assert result.rejection.message == "1 file(s) exceed 5MB limit: huge.png"


def test_all_images_oversized_raises_with_listing():
    files = [_file("big.jpg", size=6 * MB)]

    with pytest.raises(ValidationError) as excinfo:
        process_files(files)

    assert str(excinfo.value) == "1 file(s) exceed 5MB limit: big.jpg"


def test_file_exactly_at_limit_is_accepted():
    result = process_files([_file("edge.jpg", size=5 * MB)])

    assert len(result.valid_files) == 1


def test_custom_limits():
    files = [_file("a.jpg", size=2 * MB), _file("b.jpg")]

    result = process_files(files, max_file_size=1 * MB, max_batch=1)

    assert [f.name for f in result.valid_files] == ["b.jpg"]
    assert result.rejection.message == "1 file(s) exceed 1MB limit: a.jpg"


def test_summarize_names_and_megabytes():
    assert summarize_names(["a", "b"]) == "a, b"
    assert summarize_names(["a", "b", "c", "d"]) == "a, b, c..."
    assert format_megabytes(5 * MB) == "5MB"
    assert format_megabytes(int(2.5 * MB)) == "2.5MB"
    assert RejectionSummary().messages() == []


@pytest.mark.parametrize(
    "file, expected",
    [
        (None, (False, "No file provided")),
        (_file("big.jpg", size=6 * MB), (False, "File size exceeds 5MB limit")),
        (_file("anim.gif", mime_type="image/gif"), (False, "Only JPEG, PNG, and WebP images are allowed")),
        (_file("photo.bmp", mime_type="image/png"), (False, "Invalid file extension")),
        (_file("photo.JPG"), (True, None)),
        (_file("photo.webp", mime_type="image/webp"), (True, None)),
    ],
)
def test_validate_photo_file(file, expected):
    assert validate_photo_file(file) == expected

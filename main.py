"""Command line host for the diary photo pipeline and gallery."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from observability import setup_logging
from photo_service import PhotoService, create_photo_service_from_env
from uploads.models import SelectedFile, UploadProgress
from uploads.orchestrator import PhotoUploadSession, RetryPolicy
from uploads.previews import format_file_size
from viewer.gallery import GalleryViewer, format_uploaded_at
from viewer.models import Photo


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Upload, list, download and delete photos attached to a work diary."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    upload = sub.add_parser("upload", help="Upload a batch of images to a diary.")
    upload.add_argument("diary_id")
    upload.add_argument("files", nargs="+", type=Path)
    upload.add_argument(
        "--caption",
        action="append",
        default=[],
        metavar="FILE=TEXT",
        help="Caption for one file, matched by file name. May be repeated.",
    )

    listing = sub.add_parser("list", help="List photos of a diary.")
    listing.add_argument("diary_id")
    listing.add_argument("--json", action="store_true", help="Print JSON instead of a table.")

    delete = sub.add_parser("delete", help="Delete one photo from a diary.")
    delete.add_argument("diary_id")
    delete.add_argument("photo_id")
    delete.add_argument("--yes", action="store_true", help="Skip the confirmation prompt.")

    download = sub.add_parser("download", help="Save one photo to the download directory.")
    download.add_argument("diary_id")
    download.add_argument("photo_id")

    stats = sub.add_parser("stats", help="Show photo count and total size of a diary.")
    stats.add_argument("diary_id")
    return parser.parse_args(argv)


def _parse_captions(raw: Sequence[str]) -> dict[str, str]:
    captions: dict[str, str] = {}
    for item in raw:
        name, sep, text = item.partition("=")
        if not sep:
            raise SystemExit(f"Invalid --caption value {item!r}, expected FILE=TEXT")
        captions[name.strip()] = text
    return captions


def _print_progress(progress: UploadProgress) -> None:
    print(f"\rUploading {progress.current}/{progress.total} ({progress.percent}%)", end="", file=sys.stderr)
    if progress.current == progress.total:
        print(file=sys.stderr)


def _photo_summary(photo: Photo) -> dict[str, Any]:
    return {
        "id": photo.id,
        "file_name": photo.file_name,
        "size": format_file_size(photo.file_size),
        "caption": photo.caption,
        "uploaded_at": format_uploaded_at(photo),
        "url": photo.url,
    }


async def _cmd_upload(service: PhotoService, args: argparse.Namespace) -> int:
    try:
        files = [SelectedFile.from_path(path) for path in args.files]
    except OSError as exc:
        print(f"Cannot read {exc.filename or 'file'}: {exc.strerror or exc}", file=sys.stderr)
        return 2
    captions_by_name = _parse_captions(args.caption)
    session = PhotoUploadSession(
        args.diary_id,
        service,
        max_file_size=service.config.max_file_size,
        retry=RetryPolicy(max_attempts=service.config.upload_attempts),
        on_progress=_print_progress,
    )
    if not await session.select_files(files):
        print(session.error, file=sys.stderr)
        return 2
    if session.error:
        print(session.error, file=sys.stderr)
    for preview in session.previews:
        caption = captions_by_name.get(preview.display_name)
        if caption:
            session.update_caption(preview.id, caption)

    result = await session.upload()
    if result is None:
        print(session.error or "Nothing to upload", file=sys.stderr)
        return 1
    for item in result.successful:
        print(f"uploaded {item.file_name} -> {item.photo.id if item.photo else '?'}")
    if result.error_summary:
        print(result.error_summary, file=sys.stderr)
    return 0 if result.successful else 1


async def _cmd_list(service: PhotoService, args: argparse.Namespace) -> int:
    viewer = GalleryViewer(args.diary_id, service)
    await viewer.mount()
    if viewer.error:
        print(viewer.error, file=sys.stderr)
        return 1
    rows = [_photo_summary(photo) for photo in viewer.photos]
    if args.json:
        print(json.dumps(rows, ensure_ascii=False, indent=2))
    elif viewer.is_empty:
        print("No photos yet")
    else:
        for index, row in enumerate(rows, start=1):
            caption = f"  {row['caption']}" if row["caption"] else ""
            print(f"{index:>3}. {row['id']}  {row['file_name']}  {row['size']}  {row['uploaded_at']}{caption}")
    return 0


async def _prompt(message: str) -> bool:
    answer = await asyncio.to_thread(input, f"{message} [y/N] ")
    return answer.strip().lower() in {"y", "yes"}


async def _cmd_delete(service: PhotoService, args: argparse.Namespace) -> int:
    viewer = GalleryViewer(
        args.diary_id,
        service,
        confirm=(lambda _message: True) if args.yes else _prompt,
        alert=lambda message: print(message, file=sys.stderr),
        can_edit=True,
    )
    await viewer.mount()
    if viewer.state.index_of(args.photo_id) < 0:
        print(f"Photo {args.photo_id} not found in diary {args.diary_id}", file=sys.stderr)
        return 1
    deleted = await viewer.delete_photo(args.photo_id)
    return 0 if deleted else 1


async def _cmd_download(service: PhotoService, args: argparse.Namespace) -> int:
    viewer = GalleryViewer(
        args.diary_id, service, alert=lambda message: print(message, file=sys.stderr)
    )
    await viewer.mount()
    index = viewer.state.index_of(args.photo_id)
    if index < 0:
        print(f"Photo {args.photo_id} not found in diary {args.diary_id}", file=sys.stderr)
        return 1
    viewer.open_lightbox(index)
    try:
        ok = await viewer.download_current()
    finally:
        viewer.unmount()
    return 0 if ok else 1


async def _cmd_stats(service: PhotoService, args: argparse.Namespace) -> int:
    stats = await service.get_photo_statistics(args.diary_id)
    print(f"{stats['total_photos']} photo(s), {stats['total_size_mb']} MB")
    return 0


_COMMANDS = {
    "upload": _cmd_upload,
    "list": _cmd_list,
    "delete": _cmd_delete,
    "download": _cmd_download,
    "stats": _cmd_stats,
}


async def _run(args: argparse.Namespace) -> int:
    service = create_photo_service_from_env()
    try:
        return await _COMMANDS[args.command](service, args)
    finally:
        close = getattr(service.records, "close", None)
        if callable(close):
            close()
        client = getattr(service.storage, "client", None)
        if client is not None:
            await client.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    setup_logging()
    args = _parse_args(argv)
    logging.debug("Running command %s", args.command)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())

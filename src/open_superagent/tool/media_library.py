#!/usr/bin/env python
# coding: utf-8
"""
Listing of generated media files under PUBLIC_DIR for the media routes.
"""

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List

from open_superagent.tool.logger import bootstrap_logger

logger = bootstrap_logger()

# kind -> (sub-directory of PUBLIC_DIR, item type, extension pattern)
MEDIA_KINDS = {
    "videos": ("generated-videos", "video", re.compile(r"\.(mp4|avi|mov|wmv|flv|webm)$", re.IGNORECASE)),
    "music": ("generated-music", "audio", re.compile(r"\.(mp3|wav|flac|m4a|ogg|aac)$", re.IGNORECASE)),
}

_SIZE_UNITS = ["Bytes", "KB", "MB", "GB"]


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    i = 0
    while size >= 1024 ** (i + 1) and i < len(_SIZE_UNITS) - 1:
        i += 1
    value = round(size / (1024 ** i), 2)
    if value == int(value):
        value = int(value)
    return f"{value} {_SIZE_UNITS[i]}"


def _created_at(path: Path) -> datetime:
    stat = path.stat()
    ts = getattr(stat, "st_birthtime", None) or stat.st_mtime
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def list_media(public_dir: Path, kind: str) -> List[Dict]:
    """Media items of one kind, newest first. A missing directory yields []."""
    if kind not in MEDIA_KINDS:
        raise ValueError(f"Unknown media kind: {kind}")
    subdir, item_type, pattern = MEDIA_KINDS[kind]
    directory = Path(public_dir) / subdir
    if not directory.is_dir():
        return []

    items = []
    for path in directory.iterdir():
        if not path.is_file() or not pattern.search(path.name):
            continue
        try:
            created = _created_at(path)
            size = path.stat().st_size
        except OSError as e:
            logger.warning(f"Skipping media file {path.name}: {e}")
            continue
        items.append((created, {
            "id": path.stem,
            "name": path.name,
            "type": item_type,
            "url": f"/{subdir}/{path.name}",
            "size": format_file_size(size),
            "createdAt": created.isoformat().replace("+00:00", "Z"),
        }))

    items.sort(key=lambda pair: pair[0], reverse=True)
    return [item for _, item in items]

import os
import time

import pytest

from open_superagent.tool.media_library import format_file_size, list_media


@pytest.mark.parametrize("size,expected", [
    (0, "0 Bytes"),
    (500, "500 Bytes"),
    (1024, "1 KB"),
    (1536, "1.5 KB"),
    (1024 * 1024, "1 MB"),
    (5 * 1024 ** 3, "5 GB"),
])
def test_format_file_size(size, expected):
    assert format_file_size(size) == expected


def test_missing_directory_lists_nothing(public_dir):
    assert list_media(public_dir, "videos") == []


def test_unknown_kind_is_rejected(public_dir):
    with pytest.raises(ValueError):
        list_media(public_dir, "images")


def test_videos_are_filtered_and_sorted_newest_first(public_dir):
    videos = public_dir / "generated-videos"
    videos.mkdir()
    old = videos / "old.mp4"
    old.write_bytes(b"x" * 2048)
    new = videos / "new.webm"
    new.write_bytes(b"x" * 10)
    (videos / "notes.txt").write_text("not a video")
    now = time.time()
    os.utime(old, (now - 3600, now - 3600))
    os.utime(new, (now, now))

    items = list_media(public_dir, "videos")

    assert [i["name"] for i in items] == ["new.webm", "old.mp4"]
    oldest = items[1]
    assert oldest["id"] == "old"
    assert oldest["type"] == "video"
    assert oldest["url"] == "/generated-videos/old.mp4"
    assert oldest["size"] == "2 KB"
    assert oldest["createdAt"].endswith("Z")


def test_music_items_are_audio(public_dir):
    music = public_dir / "generated-music"
    music.mkdir()
    (music / "track.MP3").write_bytes(b"abc")

    items = list_media(public_dir, "music")

    assert items[0]["type"] == "audio"
    assert items[0]["size"] == "3 Bytes"

import json
import logging
import os
import threading
from datetime import datetime

import pytest

from flixbook.core.errors import GalleryUnavailable
from flixbook.schemas.gallery import GalleryError, Hero, MediaItem, MetadataOverride
from flixbook.services import indexer
from flixbook.services.dates import FileTimes, to_millis
from flixbook.services.indexer import (
    apply_override, build_gallery, gallery_payload, index_category, iter_category,
    resolve_hero, safe_build_gallery,
)

from conftest import NOW, make_settings, no_stat, touch, write_json


def _items(settings, key, file_times=no_stat):
    return index_category(key, settings, file_times=file_times, now=NOW)


# ---------- scenarios ----------

def test_camera_named_image(media_root, settings):
    touch(media_root / "gallery/moments/IMG_20230815_120000.jpg")
    gallery = build_gallery(settings, file_times=no_stat, now=NOW)

    row = gallery.rows[0]
    assert row.title == "Top Moments • Director's Cut"
    [item] = row.items
    assert item.id == "moments-0"
    assert item.title == "Aug 15, 2023"
    assert item.kind == "image"
    assert item.src == "/gallery/moments/IMG_20230815_120000.jpg"
    assert item.poster is None
    assert item.timestamp_ms == to_millis(datetime(2023, 8, 15))


def test_video_with_filesystem_date_blurb_and_poster(media_root, settings):
    trips = media_root / "gallery/trips"
    touch(trips / "beach-trip.mp4")
    touch(trips / "beach-trip.jpg")
    write_json(trips / "meta.json", {"beach-trip": {"blurb": "so fun"}})
    birth = datetime(2022, 3, 1).timestamp()

    items = _items(settings, "trips", file_times=lambda p: FileTimes(birth=birth))

    video = next(i for i in items if i.kind == "video")
    assert video.title == "Mar 1, 2022"
    assert video.blurb == "so fun"
    assert video.timestamp_ms == to_millis(datetime(2022, 3, 1))
    assert video.src == "/gallery/trips/beach-trip.mp4"
    assert video.poster == "/gallery/trips/beach-trip.jpg"


def test_invalid_sidecar_date_and_unreadable_stat(media_root, settings):
    food = media_root / "gallery/food"
    touch(food / "photo1.png")
    write_json(food / "meta.json", {"photo1.png": {"date": "2021-13-40"}})

    [item] = _items(settings, "food")
    assert item.title == "Photo1"
    assert item.timestamp_ms == 0


def test_hero_selected_video_with_poster(media_root, settings):
    hero_dir = media_root / "hero"
    touch(hero_dir / "clip.mp4")
    touch(hero_dir / "clip.jpg")
    write_json(hero_dir / "meta.json", {"select": "clip.mp4", "fit": "contain"})

    assert resolve_hero(settings) == Hero(type="video", src="/hero/clip.mp4", poster="/hero/clip.jpg", fit="contain")


def test_missing_category_directories_give_empty_rows(media_root, settings):
    touch(media_root / "gallery/trips/IMG_20230815.jpg")
    gallery = build_gallery(settings, file_times=no_stat, now=NOW)

    assert [r.title for r in gallery.rows] == list(settings.categories.values())
    assert [len(r.items) for r in gallery.rows] == [0, 1, 0, 0]
    assert gallery.hero is None


def test_missing_media_root_is_an_empty_gallery(tmp_path):
    settings = make_settings(tmp_path / "nope")
    gallery = build_gallery(settings, file_times=no_stat, now=NOW)
    assert all(not r.items for r in gallery.rows)


# ---------- ordering + ids ----------

def test_items_sorted_newest_first_with_pre_sort_ids(media_root, settings):
    d = media_root / "gallery/moments"
    for name in ["a_20200101.jpg", "b_20220101.jpg", "c.jpg", "d_20210101.png"]:
        touch(d / name)

    items = _items(settings, "moments")

    assert [i.src.rsplit("/", 1)[1] for i in items] == ["b_20220101.jpg", "d_20210101.png", "a_20200101.jpg", "c.jpg"]
    assert [i.id for i in items] == ["moments-1", "moments-3", "moments-0", "moments-2"]
    assert all(a.timestamp_ms >= b.timestamp_ms for a, b in zip(items, items[1:]))
    assert items[-1].title == "C"


def test_equal_dates_keep_name_order(media_root, settings):
    d = media_root / "gallery/jokes"
    for name in ["b.jpg", "a.jpg", "c.jpg"]:
        touch(d / name)
    items = _items(settings, "jokes")
    assert [i.title for i in items] == ["A", "B", "C"]


def test_unsupported_files_and_directories_ignored(media_root, settings):
    d = media_root / "gallery/moments"
    touch(d / "notes.txt")
    touch(d / "clip.mkv")
    (d / "folder.jpg").mkdir(parents=True)
    touch(d / "PIC_20200101.JPG")
    touch(d / "logo.svg")

    items = _items(settings, "moments")
    assert sorted(i.src for i in items) == ["/gallery/moments/PIC_20200101.JPG", "/gallery/moments/logo.svg"]


def test_filenames_are_percent_encoded(media_root, settings):
    touch(media_root / "gallery/moments/my pic #1.jpg")
    [item] = _items(settings, "moments")
    assert item.src == "/gallery/moments/my%20pic%20%231.jpg"


def test_video_without_poster(media_root, settings):
    touch(media_root / "gallery/jokes/dance.webm")
    [item] = _items(settings, "jokes")
    assert item.kind == "video"
    assert item.poster is None


def test_poster_extension_matches_case_insensitively(media_root, settings):
    d = media_root / "gallery/jokes"
    touch(d / "clip.mp4")
    touch(d / "clip.Jpg")
    [video] = [i for i in _items(settings, "jokes") if i.kind == "video"]
    assert video.poster == "/gallery/jokes/clip.Jpg"


def test_poster_probe_order_beats_name_order(media_root, settings):
    d = media_root / "gallery/jokes"
    touch(d / "clip.mov")
    touch(d / "clip.PNG")
    touch(d / "clip.jpeg")
    [video] = [i for i in _items(settings, "jokes") if i.kind == "video"]
    assert video.poster == "/gallery/jokes/clip.jpeg"


# ---------- sidecar overrides ----------

def test_override_title_used_when_no_date(media_root, settings):
    d = media_root / "gallery/jokes"
    touch(d / "silly-face.png")
    write_json(d / "meta.json", {"silly-face.png": {"title": "Silly Face Contest", "blurb": "lol"}})
    [item] = _items(settings, "jokes")
    assert item.title == "Silly Face Contest"
    assert item.blurb == "lol"


def test_date_title_beats_override_title(media_root, settings):
    d = media_root / "gallery/moments"
    touch(d / "IMG_20230815.jpg")
    write_json(d / "meta.json", {"IMG_20230815": {"title": "Ignored"}})
    [item] = _items(settings, "moments")
    assert item.title == "Aug 15, 2023"


def test_override_date_beats_filename_date(media_root, settings):
    d = media_root / "gallery/moments"
    touch(d / "IMG_20230815.jpg")
    write_json(d / "meta.json", {"IMG_20230815.jpg": {"date": "01/02/2020"}})
    [item] = _items(settings, "moments")
    assert item.timestamp_ms == to_millis(datetime(2020, 2, 1))
    assert item.title == "Feb 1, 2020"


def test_exact_filename_entry_beats_stem_entry(media_root, settings):
    d = media_root / "gallery/food"
    touch(d / "pasta.jpg")
    write_json(d / "meta.json", {"pasta": {"title": "Stem"}, "pasta.jpg": {"title": "Exact"}})
    [item] = _items(settings, "food")
    assert item.title == "Exact"


def test_non_string_override_fields_ignored(media_root, settings):
    d = media_root / "gallery/food"
    touch(d / "pasta.jpg")
    write_json(d / "meta.json", {"pasta.jpg": {"title": 42, "blurb": ["x"], "date": None}})
    [item] = _items(settings, "food")
    assert item.title == "Pasta"
    assert item.blurb is None


def test_malformed_sidecar_is_ignored(media_root, settings, caplog):
    d = media_root / "gallery/food"
    touch(d / "pasta.jpg")
    (d / "meta.json").write_text("{not json", encoding="utf-8")

    with caplog.at_level(logging.WARNING, logger="flixbook"):
        [item] = _items(settings, "food")
    assert item.title == "Pasta"
    assert "malformed sidecar" in caplog.text


def test_sidecar_that_is_not_an_object_is_ignored(media_root, settings):
    d = media_root / "gallery/food"
    touch(d / "pasta.jpg")
    write_json(d / "meta.json", ["pasta.jpg"])
    [item] = _items(settings, "food")
    assert item.title == "Pasta"


def test_apply_override_is_a_per_field_merge():
    base = MediaItem(id="food-0", title="Pasta", kind="image", src="/gallery/food/pasta.jpg")

    merged = apply_override(base, MetadataOverride(blurb="carbs"))
    assert merged.title == "Pasta" and merged.blurb == "carbs" and merged.src == base.src
    assert base.blurb is None  # original untouched

    dated = apply_override(base, MetadataOverride(title="Dinner", date="2024-01-05"))
    assert dated.title == "Jan 5, 2024"
    assert dated.timestamp_ms == to_millis(datetime(2024, 1, 5))

    assert apply_override(base, MetadataOverride()) is base


# ---------- hero ----------

def test_hero_prefers_first_video(media_root, settings):
    hero_dir = media_root / "hero"
    for name in ["b.png", "a.jpg", "z.mov"]:
        touch(hero_dir / name)
    assert resolve_hero(settings) == Hero(type="video", src="/hero/z.mov", poster=None, fit="cover")


def test_hero_falls_back_to_first_image(media_root, settings):
    hero_dir = media_root / "hero"
    for name in ["b.png", "a.jpg", "readme.txt"]:
        touch(hero_dir / name)
    assert resolve_hero(settings) == Hero(type="image", src="/hero/a.jpg", fit="cover")


def test_hero_select_can_pick_an_image_over_videos(media_root, settings):
    hero_dir = media_root / "hero"
    touch(hero_dir / "clip.mp4")
    touch(hero_dir / "party pic.png")
    write_json(hero_dir / "meta.json", {"select": "party pic.png"})
    assert resolve_hero(settings) == Hero(type="image", src="/hero/party%20pic.png", fit="cover")


def test_hero_missing_select_and_bad_fit(media_root, settings, caplog):
    hero_dir = media_root / "hero"
    touch(hero_dir / "a.jpg")
    write_json(hero_dir / "meta.json", {"select": "gone.mp4", "fit": "stretch"})
    with caplog.at_level(logging.WARNING, logger="flixbook"):
        hero = resolve_hero(settings)
    assert hero == Hero(type="image", src="/hero/a.jpg", fit="cover")
    assert "gone.mp4" in caplog.text


def test_no_hero_without_media(media_root, settings):
    write_json(media_root / "hero/meta.json", {"select": "clip.mp4"})
    assert resolve_hero(settings) is None
    assert resolve_hero(make_settings(media_root / "elsewhere")) is None


# ---------- failure handling ----------

def test_slow_directory_times_out_to_empty(media_root, monkeypatch):
    for key in ["moments", "trips", "food", "jokes"]:
        touch(media_root / "gallery" / key / "IMG_20230815.jpg")
    touch(media_root / "hero/a.jpg")
    settings = make_settings(media_root, scan={"timeout_seconds": 0.05})

    release = threading.Event()

    def stuck(directory):
        release.wait(5)
        return []

    monkeypatch.setattr(indexer, "_scan_names", stuck)
    try:
        gallery = build_gallery(settings, file_times=no_stat, now=NOW)
    finally:
        release.set()

    assert len(gallery.rows) == 4
    assert all(not r.items for r in gallery.rows)
    assert gallery.hero is None


def test_hung_directories_do_not_starve_a_healthy_one(media_root, monkeypatch):
    for key in ["moments", "trips", "food", "jokes"]:
        touch(media_root / "gallery" / key / "IMG_20230815.jpg")
    touch(media_root / "hero/a.mp4")
    settings = make_settings(media_root, scan={"timeout_seconds": 0.2})

    release = threading.Event()
    real_scan = indexer._scan_names

    def hang_all_but_jokes(directory):
        if directory.name != "jokes":
            release.wait(10)
        return real_scan(directory)

    monkeypatch.setattr(indexer, "_scan_names", hang_all_but_jokes)
    try:
        gallery = build_gallery(settings, file_times=no_stat, now=NOW)
    finally:
        release.set()

    assert [len(r.items) for r in gallery.rows] == [0, 0, 0, 1]
    assert gallery.hero is None


def test_unreadable_category_only_empties_that_row(media_root, settings, monkeypatch):
    touch(media_root / "gallery/moments/IMG_20230815.jpg")
    touch(media_root / "gallery/trips/IMG_20230816.jpg")
    real_scan = indexer._scan_names

    def flaky(directory):
        if directory.name == "trips":
            raise PermissionError(13, "Permission denied", str(directory))
        return real_scan(directory)

    monkeypatch.setattr(indexer, "_scan_names", flaky)
    gallery = build_gallery(settings, file_times=no_stat, now=NOW)
    assert [len(r.items) for r in gallery.rows] == [1, 0, 0, 0]


def test_sidecar_date_without_epoch_falls_back_to_inference(media_root, settings, east_of_utc):
    # year 1 at local midnight is before year 1 in UTC: it parses but has no epoch value
    d = media_root / "gallery/food"
    touch(d / "pasta.jpg")
    touch(d / "noodles.jpg")
    write_json(d / "meta.json", {
        "pasta.jpg": {"date": "0001-01-01", "title": "Pasta night"},
        "noodles": {"date": "0001-01-01", "title": "Noodle night"},
    })
    birth = datetime(2022, 3, 1).timestamp()

    def times(path):
        return FileTimes(birth=birth) if path.name == "pasta.jpg" else None

    items = _items(settings, "food", file_times=times)
    by_src = {i.src: i for i in items}
    assert set(by_src) == {"/gallery/food/pasta.jpg", "/gallery/food/noodles.jpg"}

    pasta = by_src["/gallery/food/pasta.jpg"]
    assert pasta.title == "Mar 1, 2022"
    assert pasta.timestamp_ms == to_millis(datetime(2022, 3, 1))

    noodles = by_src["/gallery/food/noodles.jpg"]
    assert noodles.title == "Noodle night"
    assert noodles.timestamp_ms == 0


def test_one_bad_file_is_skipped(media_root, settings):
    d = media_root / "gallery/moments"
    touch(d / "good.jpg")
    touch(d / "bad.jpg")

    def times(path):
        if path.name == "bad.jpg":
            raise RuntimeError("boom")
        return None

    items = _items(settings, "moments", file_times=times)
    assert [i.title for i in items] == ["Good"]


def test_symlink_escaping_media_root_is_skipped(media_root, settings, tmp_path):
    outside = touch(tmp_path / "secret.jpg")
    d = media_root / "gallery/moments"
    touch(d / "ok.jpg")
    try:
        os.symlink(outside, d / "leak.jpg")
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not supported here")
    items = _items(settings, "moments")
    assert [i.title for i in items] == ["Ok"]


def test_unreadable_media_root_is_catastrophic(tmp_path):
    root = touch(tmp_path / "not-a-dir")
    settings = make_settings(root)

    with pytest.raises(GalleryUnavailable):
        build_gallery(settings, file_times=no_stat, now=NOW)

    result = safe_build_gallery(settings, file_times=no_stat, now=NOW)
    assert isinstance(result, GalleryError)
    assert gallery_payload(result) == {"error": "Failed to read gallery"}


# ---------- payload ----------

def test_payload_shape_and_idempotence(media_root, settings):
    d = media_root / "gallery/trips"
    touch(d / "IMG_20230815.jpg")
    touch(d / "hike.mp4")
    touch(d / "hike.webp")
    write_json(d / "meta.json", {"hike": {"blurb": "steep"}})
    touch(media_root / "hero/banner.png")

    first = gallery_payload(build_gallery(settings, file_times=no_stat, now=NOW))
    second = gallery_payload(build_gallery(settings, file_times=no_stat, now=NOW))
    assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)

    assert first["hero"] == {"type": "image", "src": "/hero/banner.png", "fit": "cover"}
    trips = first["rows"][1]
    assert trips["title"] == "Trips & Adventures"
    dated = trips["items"][0]
    assert dated == {
        "id": "trips-0",
        "title": "Aug 15, 2023",
        "kind": "image",
        "src": "/gallery/trips/IMG_20230815.jpg",
        "dateMs": to_millis(datetime(2023, 8, 15)),
    }
    video = next(i for i in trips["items"] if i["kind"] == "video")
    assert video["poster"] == "/gallery/trips/hike.webp"
    assert video["blurb"] == "steep"


def test_explain_reports_date_sources(media_root, settings):
    d = media_root / "gallery/moments"
    touch(d / "IMG_20230815.jpg")
    touch(d / "party.png")
    touch(d / "cake.jpg")
    write_json(d / "meta.json", {"cake": {"date": "2020-05-05"}})
    birth = datetime(2022, 3, 1).timestamp()

    def times(path):
        return FileTimes(birth=birth) if path.name == "party.png" else None

    sources = {e.name: e.date_source for e in iter_category("moments", settings, file_times=times, now=NOW)}
    assert sources == {"IMG_20230815.jpg": "filename_calendar", "party.png": "filesystem", "cake.jpg": "sidecar"}


def test_custom_categories_keep_declared_order(media_root):
    settings = make_settings(media_root, categories={"zoo": "Zoo Day", "art": "Art Walk"})
    touch(media_root / "gallery/art/x.jpg")
    gallery = build_gallery(settings, file_times=no_stat, now=NOW)
    assert [r.title for r in gallery.rows] == ["Zoo Day", "Art Walk"]
    assert gallery.rows[1].items[0].id == "art-0"

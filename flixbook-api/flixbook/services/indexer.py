# flixbook/services/indexer.py
"""
Gallery indexer: one full scan of the media root per call, nothing cached.

Layout under settings.media_root:
    gallery/<category>/*.{jpg,png,...,mp4,...}   one Row per configured category
    gallery/<category>/meta.json                 optional {filename|stem: {title, blurb, date}}
    hero/*                                       optional banner media
    hero/meta.json                               optional {select, fit}

Failures stay local: a missing, unreadable or slow directory yields an empty row
(or no hero); a broken sidecar means no overrides. Only a media root that exists
but cannot be listed raises GalleryUnavailable.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Set, Tuple, Union

from flixbook.core.config import GallerySettings, get_settings
from flixbook.core.errors import GalleryUnavailable, ScanTimeout
from flixbook.schemas.gallery import (
    GalleryError, GalleryResponse, Hero, HeroSidecar, MediaItem, MetadataOverride, Row,
)
from flixbook.services.dates import (
    DateRules, FileTimes, fallback_title, format_display_date, parse_override_date,
    read_file_times, resolve_date, to_millis,
)
from flixbook.utils.http import media_url, safe_rel_under

LOGGER = logging.getLogger("flixbook.indexer")

GALLERY_ERROR_MESSAGE = "Failed to read gallery"
HERO_FITS = ("cover", "contain")

FileTimesLookup = Callable[[Path], Optional[FileTimes]]


class IndexedEntry(NamedTuple):
    name: str
    item: MediaItem
    date_source: str            # strategy name, "sidecar", or "none"
    override: MetadataOverride


# ---------- Directory + sidecar helpers ----------

def _ext(name: str) -> str:
    return os.path.splitext(name)[1].lower()


def _scan_names(directory: Path) -> List[str]:
    """Names of regular files in `directory`, sorted so every scan sees the same order."""
    with os.scandir(directory) as it:
        names = [e.name for e in it if e.is_file()]
    return sorted(names)


def _run_with_timeout(fn: Callable, path: Path, timeout: float):
    """
    Call fn(path) on its own daemon thread and wait at most `timeout` seconds.
    A hung call is abandoned (never joined), so it cannot delay later listings.
    """
    outcome: dict = {}

    def _job():
        try:
            outcome["value"] = fn(path)
        except BaseException as e:
            outcome["error"] = e

    t = threading.Thread(target=_job, name=f"flixbook-scan:{path.name}", daemon=True)
    t.start()
    t.join(timeout if timeout > 0 else None)
    if t.is_alive():
        raise ScanTimeout(path, timeout)
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


def _list_if_dir(directory: Path) -> Optional[List[str]]:
    if not directory.is_dir():
        return None
    return _scan_names(directory)


def list_media_dir(directory: Path, timeout: float) -> Optional[List[str]]:
    """
    Sorted file names in `directory`, or None when the directory does not exist.
    Raises OSError if it exists but cannot be read, ScanTimeout if probing or
    listing it takes longer than `timeout`.
    """
    return _run_with_timeout(_list_if_dir, directory, timeout)


def load_sidecar(directory: Path, names: Set[str], sidecar_name: str) -> dict:
    """Parsed sidecar object, or {} when it is absent, unreadable or not a JSON object."""
    if sidecar_name not in names:
        return {}
    path = directory / sidecar_name
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, ValueError) as e:
        LOGGER.warning(f"Ignoring malformed sidecar {path}: {e}")
        return {}
    if not isinstance(data, dict):
        LOGGER.warning(f"Ignoring sidecar {path}: expected a JSON object, got {type(data).__name__}")
        return {}
    return data


def _string_fields(entry, fields) -> Dict[str, str]:
    """Keep only non-blank string values for the given field names."""
    if not isinstance(entry, dict):
        return {}
    return {k: v for k, v in entry.items() if k in fields and isinstance(v, str) and v.strip()}


def override_for(meta: dict, filename: str) -> MetadataOverride:
    """Sidecar entry for `filename`: exact name first, then the stem."""
    entry = meta.get(filename)
    if not isinstance(entry, dict):
        entry = meta.get(os.path.splitext(filename)[0])
    return MetadataOverride(**_string_fields(entry, MetadataOverride.model_fields))


def find_poster(video_name: str, names: Set[str], poster_ext: List[str]) -> Optional[str]:
    """
    First same-stem image in probe order ('clip.mp4' -> 'clip.jpg').
    Extensions compare case-insensitively ('clip.Jpg' counts); an exact
    lowercase match wins among case variants of the same extension.
    """
    stem = os.path.splitext(video_name)[0]
    siblings = sorted(n for n in names if os.path.splitext(n)[0] == stem and n != video_name)
    for e in poster_ext:
        if stem + e in names:
            return stem + e
        for candidate in siblings:
            if _ext(candidate) == e:
                return candidate
    return None


# ---------- Items ----------

def apply_override(item: MediaItem, override: MetadataOverride) -> MediaItem:
    """
    Overlay a sidecar entry on a derived item, field by field:
      - a parseable `date` replaces the timestamp
      - any known timestamp is shown as the title; otherwise the override title wins
      - `blurb` is taken when present
    """
    update: dict = {}
    shown: Optional[datetime] = None

    if override.date:
        dt = parse_override_date(override.date)
        if dt is not None:
            update["timestamp_ms"] = to_millis(dt)
            shown = dt
        else:
            LOGGER.debug(f"Unparseable sidecar date {override.date!r} for {item.id}")

    if shown is not None:
        update["title"] = format_display_date(shown)
    elif not item.timestamp_ms and override.title:
        update["title"] = override.title

    if override.blurb:
        update["blurb"] = override.blurb

    return item.model_copy(update=update) if update else item


def _derive_item(item_id: str, name: str, names: Set[str], url_dir: List[str], prefix: str,
                 times: Optional[FileTimes], settings: GallerySettings,
                 now: datetime, rules: DateRules) -> Tuple[MediaItem, str]:
    res = resolve_date(name, times, now=now, rules=rules)
    is_video = _ext(name) in settings.video_ext
    poster = find_poster(name, names, settings.poster_ext) if is_video else None
    item = MediaItem(
        id=item_id,
        title=format_display_date(res.value) if res else fallback_title(name),
        kind="video" if is_video else "image",
        src=media_url(prefix, *url_dir, name),
        poster=media_url(prefix, *url_dir, poster) if poster else None,
        timestamp_ms=to_millis(res.value) if res else 0,
    )
    return item, (res.source if res else "none")


def iter_category(key: str, settings: GallerySettings, *,
                  file_times: FileTimesLookup = read_file_times,
                  now: Optional[datetime] = None) -> Iterator[IndexedEntry]:
    """
    Yield one IndexedEntry per media file of a category, in name order (pre-sort).
    A missing directory yields nothing; listing errors propagate to the caller.
    """
    now = now or datetime.now(timezone.utc)
    rules = DateRules.from_settings(settings)
    directory = settings.gallery_dir / key

    if safe_rel_under(settings.media_root, directory) is None:
        LOGGER.warning(f"Category directory {directory} resolves outside the media root; skipping",
                       extra={"category": key})
        return
    names = list_media_dir(directory, settings.scan_timeout)
    if names is None:
        LOGGER.debug(f"No directory for category '{key}' at {directory}", extra={"category": key})
        return

    name_set = set(names)
    meta = load_sidecar(directory, name_set, settings.sidecar_name)
    media_ext = set(settings.media_ext)

    index = 0
    for name in names:
        if _ext(name) not in media_ext:
            continue
        path = directory / name
        if safe_rel_under(settings.media_root, path) is None:
            LOGGER.warning(f"{path} resolves outside the media root; skipping", extra={"category": key})
            continue
        try:
            item, source = _derive_item(
                f"{key}-{index}", name, name_set, [key], settings.gallery_prefix,
                file_times(path), settings, now, rules,
            )
            override = override_for(meta, name)
            merged = apply_override(item, override)
        except Exception:
            LOGGER.exception(f"Skipping {path}: could not build a gallery item", extra={"category": key})
            continue
        if override.date and parse_override_date(override.date) is not None:
            source = "sidecar"
        index += 1
        yield IndexedEntry(name, merged, source, override)


def index_category(key: str, settings: GallerySettings, *,
                   file_times: FileTimesLookup = read_file_times,
                   now: Optional[datetime] = None) -> List[MediaItem]:
    """Items of one category, newest first (unknown dates last, name order among ties)."""
    items = [e.item for e in iter_category(key, settings, file_times=file_times, now=now)]
    items.sort(key=lambda it: it.timestamp_ms, reverse=True)
    return items


def build_row(key: str, title: str, settings: GallerySettings, *,
              file_times: FileTimesLookup = read_file_times,
              now: Optional[datetime] = None) -> Row:
    """A Row for one category; any failure degrades to an empty row."""
    try:
        items = index_category(key, settings, file_times=file_times, now=now)
    except ScanTimeout as e:
        LOGGER.warning(f"Category '{key}' left empty: {e}", extra={"category": key})
        items = []
    except OSError as e:
        LOGGER.warning(f"Category '{key}' left empty: cannot read directory ({e})", extra={"category": key})
        items = []
    except Exception:
        LOGGER.exception(f"Category '{key}' left empty after an unexpected error", extra={"category": key})
        items = []
    return Row(title=title, items=items)


# ---------- Hero ----------

def resolve_hero(settings: GallerySettings) -> Optional[Hero]:
    """
    Pick the banner from the hero directory:
      1) sidecar `select`, if it names a media file that exists
      2) first video by name
      3) first image by name
    Videos get a same-stem poster when one exists.
    """
    directory = settings.hero_dir
    if safe_rel_under(settings.media_root, directory) is None:
        LOGGER.warning(f"Hero directory {directory} resolves outside the media root; skipping")
        return None
    names = list_media_dir(directory, settings.scan_timeout)
    if not names:
        return None

    name_set = set(names)
    sidecar = HeroSidecar(**_string_fields(
        load_sidecar(directory, name_set, settings.sidecar_name), HeroSidecar.model_fields))

    media_ext = set(settings.media_ext)
    chosen: Optional[str] = None
    if sidecar.select:
        if sidecar.select in name_set and _ext(sidecar.select) in media_ext:
            chosen = sidecar.select
        else:
            LOGGER.warning(f"Hero sidecar selects {sidecar.select!r}, which is not a media file in {directory}")
    if chosen is None:
        chosen = (next((n for n in names if _ext(n) in settings.video_ext), None)
                  or next((n for n in names if _ext(n) in settings.image_ext), None))
    if chosen is None:
        return None
    if safe_rel_under(settings.media_root, directory / chosen) is None:
        LOGGER.warning(f"Hero file {chosen} resolves outside the media root; skipping")
        return None

    fit = sidecar.fit if sidecar.fit in HERO_FITS else "cover"
    if sidecar.fit and sidecar.fit not in HERO_FITS:
        LOGGER.warning(f"Unknown hero fit {sidecar.fit!r}; using 'cover'")

    src = media_url(settings.hero_prefix, chosen)
    if _ext(chosen) in settings.video_ext:
        poster = find_poster(chosen, name_set, settings.poster_ext)
        return Hero(type="video", src=src,
                    poster=media_url(settings.hero_prefix, poster) if poster else None, fit=fit)
    return Hero(type="image", src=src, fit=fit)


def _hero_or_none(settings: GallerySettings) -> Optional[Hero]:
    try:
        return resolve_hero(settings)
    except ScanTimeout as e:
        LOGGER.warning(f"No hero: {e}")
    except OSError as e:
        LOGGER.warning(f"No hero: cannot read {settings.hero_dir} ({e})")
    except Exception:
        LOGGER.exception("No hero: unexpected error while resolving it")
    return None


# ---------- Whole gallery ----------

def _probe_root(root: Path) -> bool:
    if not root.exists():
        return False
    with os.scandir(root):
        pass
    return True


def _check_media_root(root: Path, timeout: float) -> None:
    """
    A missing root is just an empty gallery; one that exists but cannot be listed
    (or does not answer within `timeout`) is fatal.
    """
    try:
        exists = _run_with_timeout(_probe_root, root, timeout)
    except ScanTimeout as e:
        raise GalleryUnavailable(f"media root {root} did not respond: {e}") from e
    except OSError as e:
        raise GalleryUnavailable(f"media root {root} is not readable: {e}") from e
    if not exists:
        LOGGER.debug(f"Media root {root} does not exist; every row will be empty")


def build_gallery(settings: Optional[GallerySettings] = None, *,
                  file_times: FileTimesLookup = read_file_times,
                  now: Optional[datetime] = None) -> GalleryResponse:
    """
    Scan everything once and return rows (in category declaration order) plus the hero.
    Raises GalleryUnavailable only when the media root itself is unusable.
    """
    settings = settings or get_settings()
    now = now or datetime.now(timezone.utc)
    _check_media_root(settings.media_root, settings.scan_timeout)

    hero = _hero_or_none(settings)
    rows = [
        build_row(key, title, settings, file_times=file_times, now=now)
        for key, title in settings.categories.items()
    ]
    LOGGER.debug(f"Gallery built: {sum(len(r.items) for r in rows)} items in {len(rows)} rows, "
                  f"hero={'yes' if hero else 'no'}")
    return GalleryResponse(rows=rows, hero=hero)


def safe_build_gallery(settings: Optional[GallerySettings] = None, *,
                       file_times: FileTimesLookup = read_file_times,
                       now: Optional[datetime] = None) -> Union[GalleryResponse, GalleryError]:
    """build_gallery() that never raises; failures come back as a GalleryError payload."""
    try:
        return build_gallery(settings, file_times=file_times, now=now)
    except GalleryUnavailable as e:
        LOGGER.error(f"Gallery unavailable: {e}")
    except Exception:
        LOGGER.exception("Unexpected failure while building the gallery")
    return GalleryError(error=GALLERY_ERROR_MESSAGE)


def gallery_payload(result: Union[GalleryResponse, GalleryError]) -> dict:
    """JSON-ready dict in the wire shape (aliases applied, None fields dropped)."""
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)

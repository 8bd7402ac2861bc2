# flixbook/schemas/gallery.py
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

MediaKind = Literal["image", "video"]
HeroFit = Literal["cover", "contain"]


class MediaItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    kind: MediaKind
    src: str
    poster: Optional[str] = None
    blurb: Optional[str] = None
    timestamp_ms: int = Field(0, serialization_alias="dateMs")


class Row(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    items: List[MediaItem] = []


class Hero(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: MediaKind
    src: str
    poster: Optional[str] = None
    fit: HeroFit = "cover"


class GalleryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    rows: List[Row]
    hero: Optional[Hero] = None


class GalleryError(BaseModel):
    error: str


class MetadataOverride(BaseModel):
    """One sidecar entry. Every field is optional; the sidecar is read-only input."""
    title: Optional[str] = None
    blurb: Optional[str] = None
    date: Optional[str] = None


class HeroSidecar(BaseModel):
    select: Optional[str] = None
    fit: Optional[str] = None

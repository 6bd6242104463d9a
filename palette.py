"""Palette records and their editing operations.

Every operation takes the current value and returns a new one; nothing here
mutates its inputs. The UI keeps the current ``PaletteDraft`` and the history
tuple in session state and swaps them for the returned values.
"""
from __future__ import annotations

import itertools
import json
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Iterable

from color_tools import normalize_color

logger = logging.getLogger(__name__)

MAX_IMAGES_PER_COLOR = 3
DEFAULT_NEW_COLOR = "#ffffff"
DATE_FORMAT = "%d/%m/%Y, %H:%M:%S"

DEFAULT_COLORS = (
    ("color-1", "#93c5fd"),
    ("color-2", "#fde047"),
    ("color-3", "#34d399"),
    ("color-4", "#fca5a5"),
    ("color-5", "#c084fc"),
)

RecordId = str | int

_id_counter = itertools.count(1)


def _new_id() -> int:
    # epoch millis plus a per-process counter so quick successive adds stay unique
    return int(time.time() * 1000) * 1000 + next(_id_counter) % 1000


def _record_id(now: datetime, history: Iterable[PaletteRecord]) -> int:
    """Epoch millis of ``now``, bumped past ids already in the history."""
    taken = {str(r.id) for r in history}
    record_id = int(now.timestamp() * 1000)
    while str(record_id) in taken:
        record_id += 1
    return record_id


@dataclass(frozen=True)
class ColorEntry:
    id: RecordId
    color: str
    images: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "color": self.color, "images": list(self.images)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ColorEntry:
        images = data.get("images") or []
        if not isinstance(images, list):
            raise ValueError("images must be a list")
        return cls(
            id=data["id"],
            color=str(data.get("color") or ""),
            images=tuple(str(i) for i in images),
        )


@dataclass(frozen=True)
class PaletteDraft:
    colors: tuple[ColorEntry, ...] = ()
    notes: str = ""

    def find(self, color_id: RecordId) -> ColorEntry | None:
        for entry in self.colors:
            if entry.id == color_id:
                return entry
        return None

    @property
    def all_images(self) -> list[str]:
        return [img for entry in self.colors for img in entry.images]


@dataclass(frozen=True)
class PaletteRecord:
    id: RecordId
    colors: tuple[ColorEntry, ...] = field(default_factory=tuple)
    notes: str = ""
    date: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "colors": [c.to_dict() for c in self.colors],
            "notes": self.notes,
            "date": self.date,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaletteRecord:
        colors = data.get("colors") or []
        if not isinstance(colors, list):
            raise ValueError("colors must be a list")
        return cls(
            id=data["id"],
            colors=tuple(ColorEntry.from_dict(c) for c in colors),
            notes=str(data.get("notes") or ""),
            date=str(data.get("date") or ""),
        )


def default_draft() -> PaletteDraft:
    return PaletteDraft(colors=tuple(ColorEntry(id=cid, color=c) for cid, c in DEFAULT_COLORS))


def _map_color(draft: PaletteDraft, color_id: RecordId, fn: Callable[[ColorEntry], ColorEntry]) -> PaletteDraft:
    return replace(draft, colors=tuple(fn(c) if c.id == color_id else c for c in draft.colors))


def add_color(draft: PaletteDraft, color: str = DEFAULT_NEW_COLOR, color_id: RecordId | None = None) -> PaletteDraft:
    entry = ColorEntry(id=color_id if color_id is not None else _new_id(), color=normalize_color(color))
    return replace(draft, colors=draft.colors + (entry,))


def remove_color(draft: PaletteDraft, color_id: RecordId) -> PaletteDraft:
    return replace(draft, colors=tuple(c for c in draft.colors if c.id != color_id))


def set_color(draft: PaletteDraft, color_id: RecordId, color: str) -> PaletteDraft:
    """Replace one entry's colour. Raises ValueError for unparseable input."""
    value = normalize_color(color)
    return _map_color(draft, color_id, lambda c: replace(c, color=value))


def attach_image(draft: PaletteDraft, color_id: RecordId, data_url: str) -> PaletteDraft:
    # Uploads past the per-colour limit are ignored, like the disabled file input.
    def _attach(entry: ColorEntry) -> ColorEntry:
        if len(entry.images) >= MAX_IMAGES_PER_COLOR:
            return entry
        return replace(entry, images=entry.images + (data_url,))

    return _map_color(draft, color_id, _attach)


def remove_image(draft: PaletteDraft, color_id: RecordId, data_url: str) -> PaletteDraft:
    return _map_color(
        draft, color_id, lambda c: replace(c, images=tuple(i for i in c.images if i != data_url))
    )


def set_notes(draft: PaletteDraft, notes: str | None) -> PaletteDraft:
    return replace(draft, notes=notes or "")


def save_to_history(
    draft: PaletteDraft,
    history: tuple[PaletteRecord, ...],
    now: datetime | None = None,
    id_factory: Callable[[], RecordId] | None = None,
) -> tuple[tuple[PaletteRecord, ...], PaletteDraft]:
    """Prepend the draft to the history and reset the draft.

    Colours left empty are dropped. A draft with no colours and blank notes is
    not saved; the inputs come back unchanged.
    """
    colors = tuple(c for c in draft.colors if c.color)
    if not colors and not draft.notes.strip():
        return history, draft

    now = now or datetime.now()
    record = PaletteRecord(
        id=id_factory() if id_factory else _record_id(now, history),
        colors=colors,
        notes=draft.notes,
        date=now.strftime(DATE_FORMAT),
    )
    logger.info("Saved palette %s with %d colours", record.id, len(colors))
    return (record,) + tuple(history), default_draft()


def load_from_history(record: PaletteRecord) -> PaletteDraft:
    return PaletteDraft(colors=record.colors, notes=record.notes)


def delete_from_history(history: Iterable[PaletteRecord], record_id: RecordId) -> tuple[PaletteRecord, ...]:
    return tuple(r for r in history if r.id != record_id)


def find_record(history: Iterable[PaletteRecord], record_id: RecordId) -> PaletteRecord | None:
    for record in history:
        if record.id == record_id:
            return record
    return None


def history_to_json(history: Iterable[PaletteRecord]) -> str:
    return json.dumps([r.to_dict() for r in history], ensure_ascii=False)


def history_from_json(text: str) -> tuple[PaletteRecord, ...]:
    """Parse a serialized history list.

    Raises ValueError when the payload is not a JSON list. Entries that do not
    look like palette records are skipped.
    """
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError(f"history payload must be a list, got {type(data).__name__}")

    records: list[PaletteRecord] = []
    for idx, item in enumerate(data):
        if not isinstance(item, dict):
            logger.warning("Skipping history entry %d: not an object", idx)
            continue
        try:
            records.append(PaletteRecord.from_dict(item))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Skipping history entry %d: %s", idx, e)
    return tuple(records)

"""Palette editing and history serialization tests."""
import json
from datetime import datetime

import pytest

from palette import (
    DEFAULT_COLORS,
    MAX_IMAGES_PER_COLOR,
    ColorEntry,
    PaletteDraft,
    PaletteRecord,
    add_color,
    attach_image,
    default_draft,
    delete_from_history,
    find_record,
    history_from_json,
    history_to_json,
    load_from_history,
    remove_color,
    remove_image,
    save_to_history,
    set_color,
    set_notes,
)

IMG_A = "data:image/png;base64,AAAA"
IMG_B = "data:image/png;base64,BBBB"


def test_default_draft_has_five_colours():
    draft = default_draft()
    assert [c.color for c in draft.colors] == ["#93c5fd", "#fde047", "#34d399", "#fca5a5", "#c084fc"]
    assert [c.id for c in draft.colors] == [cid for cid, _ in DEFAULT_COLORS]
    assert all(c.images == () for c in draft.colors)
    assert draft.notes == ""


def test_add_color_appends_white_with_fresh_id():
    draft = default_draft()
    a = add_color(draft)
    b = add_color(a)
    assert len(draft.colors) == 5
    assert a.colors[-1].color == "#ffffff"
    assert a.colors[-1].id != b.colors[-1].id
    assert len({c.id for c in b.colors}) == 7


def test_remove_color_filters_by_id():
    draft = remove_color(default_draft(), "color-3")
    assert [c.id for c in draft.colors] == ["color-1", "color-2", "color-4", "color-5"]
    assert remove_color(draft, "missing") == draft


def test_set_color_normalizes_and_does_not_mutate():
    draft = default_draft()
    updated = set_color(draft, "color-2", "rgb(255, 0, 128)")
    assert updated.find("color-2").color == "#ff0080"
    assert draft.find("color-2").color == "#fde047"
    assert set_color(draft, "color-1", "ABCDEF").find("color-1").color == "#abcdef"


def test_set_color_rejects_garbage():
    with pytest.raises(ValueError):
        set_color(default_draft(), "color-1", "not a colour")


def test_attach_image_caps_at_three():
    draft = default_draft()
    for i in range(MAX_IMAGES_PER_COLOR + 2):
        draft = attach_image(draft, "color-1", f"data:image/png;base64,{i}")
    assert len(draft.find("color-1").images) == MAX_IMAGES_PER_COLOR
    assert draft.find("color-2").images == ()


def test_remove_image_only_touches_that_colour():
    draft = attach_image(attach_image(default_draft(), "color-1", IMG_A), "color-1", IMG_B)
    draft = attach_image(draft, "color-2", IMG_A)
    draft = remove_image(draft, "color-1", IMG_A)
    assert draft.find("color-1").images == (IMG_B,)
    assert draft.find("color-2").images == (IMG_A,)
    assert draft.all_images == [IMG_B, IMG_A]


def test_set_notes():
    assert set_notes(default_draft(), "Advent, candles").notes == "Advent, candles"
    assert set_notes(default_draft(), None).notes == ""


def test_save_prepends_and_resets():
    now = datetime(2026, 3, 1, 9, 5, 7)
    draft = set_notes(attach_image(default_draft(), "color-1", IMG_A), "Easter")
    draft = set_color(draft, "color-2", "#000000")
    older = PaletteRecord(id=1, colors=(ColorEntry("x", "#111111"),), notes="old", date="01/01/2026, 00:00:00")

    history, fresh = save_to_history(draft, (older,), now=now, id_factory=lambda: 42)

    assert fresh == default_draft()
    assert [r.id for r in history] == [42, 1]
    saved = history[0]
    assert saved.notes == "Easter"
    assert saved.date == "01/03/2026, 09:05:07"
    assert saved.colors[0].images == (IMG_A,)
    assert saved.colors[1].color == "#000000"


def test_save_drops_empty_colours():
    draft = PaletteDraft(colors=(ColorEntry(1, ""), ColorEntry(2, "#123456")), notes="")
    history, _ = save_to_history(draft, ())
    assert [c.id for c in history[0].colors] == [2]


def test_save_default_id_is_epoch_millis():
    now = datetime(2026, 3, 1, 9, 5, 7)
    history, _ = save_to_history(default_draft(), (), now=now)
    assert history[0].id == int(now.timestamp() * 1000)


def test_saves_in_the_same_millisecond_get_distinct_ids():
    now = datetime(2026, 3, 1, 9, 5, 7)
    history, _ = save_to_history(set_notes(default_draft(), "first"), (), now=now)
    history, _ = save_to_history(set_notes(default_draft(), "second"), history, now=now)
    first_id, second_id = history[1].id, history[0].id
    assert second_id == first_id + 1

    remaining = delete_from_history(history, second_id)
    assert [r.notes for r in remaining] == ["first"]


def test_empty_draft_is_not_saved():
    draft = PaletteDraft(colors=(ColorEntry(1, ""),), notes="   ")
    history = ()
    new_history, same = save_to_history(draft, history)
    assert new_history is history
    assert same is draft


def test_notes_only_palette_is_saved():
    history, _ = save_to_history(PaletteDraft(notes="Just notes"), ())
    assert len(history) == 1
    assert history[0].colors == ()


def test_load_and_delete():
    record = PaletteRecord(id=7, colors=(ColorEntry(1, "#abcdef", (IMG_A,)),), notes="n", date="d")
    other = PaletteRecord(id=8, notes="m")
    draft = load_from_history(record)
    assert draft.colors == record.colors
    assert draft.notes == "n"

    history = (record, other)
    assert delete_from_history(history, 7) == (other,)
    assert delete_from_history(history, 99) == history
    assert find_record(history, 8) is other
    assert find_record(history, 99) is None


def test_history_json_matches_browser_format():
    # shape written by the original browser app: numeric ids, date strings
    payload = json.dumps([
        {
            "id": 1717171717171,
            "colors": [
                {"id": "color-1", "color": "#93c5fd", "images": [IMG_A]},
                {"id": 1717171700000, "color": "#ffffff", "images": []},
            ],
            "notes": "Pentecost",
            "date": "31/05/2024, 13:08:37",
        }
    ])
    (record,) = history_from_json(payload)
    assert record.id == 1717171717171
    assert record.colors[0] == ColorEntry("color-1", "#93c5fd", (IMG_A,))
    assert record.colors[1].id == 1717171700000

    again = json.loads(history_to_json((record,)))
    assert again == json.loads(payload)


def test_history_json_skips_bad_entries(caplog):
    payload = json.dumps([
        "nope",
        {"colors": []},
        {"id": 3, "colors": "oops"},
        {"id": 4, "colors": [], "notes": "ok", "date": "d"},
    ])
    with caplog.at_level("WARNING"):
        history = history_from_json(payload)
    assert [r.id for r in history] == [4]
    assert "Skipping history entry" in caplog.text


def test_history_json_requires_a_list():
    with pytest.raises(ValueError):
        history_from_json('{"id": 1}')
    with pytest.raises(ValueError):
        history_from_json("not json")

import html
import logging
import os
import tempfile
from pathlib import Path

import gradio as gr
from PIL import Image

from color_tools import parse_colors, suggest_color, text_color_for_bg
from history_store import HistoryStore, JsonFileStore
from images import data_url_to_image, image_to_data_url
from palette import (
    MAX_IMAGES_PER_COLOR,
    PaletteDraft,
    PaletteRecord,
    add_color,
    attach_image,
    default_draft,
    delete_from_history,
    find_record,
    load_from_history,
    remove_color,
    remove_image,
    save_to_history,
    set_color,
    set_notes,
)
from pdf_export import InvalidInputError, PageGeometry, PaginatedExporter
from snapshot import TITLE, render_snapshot

logger = logging.getLogger(__name__)


class Config:
    """App settings. Environment variables override the defaults."""

    EXPORT_FILENAME = "Worship_Service_Styles.pdf"
    SNAPSHOT_SCALE = 2
    JPEG_QUALITY = 95
    PAGE_WIDTH_MM = 210.0
    PAGE_HEIGHT_MM = 297.0
    MARGIN_MM = 20.0
    # reference photos are stored inline in the history, keep them small
    PHOTO_MAX_SIDE = 800

    def __init__(self):
        default_history = Path.home() / ".worship_service_styles" / "history.json"
        self.history_path = Path(os.getenv("PALETTE_HISTORY_PATH") or default_history)
        self.export_dir = Path(os.getenv("PALETTE_EXPORT_DIR") or tempfile.gettempdir())
        self.log_level = (os.getenv("PALETTE_LOG_LEVEL") or "INFO").upper()
        self.share = os.getenv("PALETTE_SHARE") == "1"
        self.electron_mode = os.getenv("ELECTRON_WRAPPER") == "1"
        self.server_port = None
        port_env = os.getenv("PORT")
        if port_env:
            try:
                self.server_port = int(port_env)
            except ValueError:
                logger.warning("Ignoring non-numeric PORT=%r", port_env)

    @property
    def geometry(self) -> PageGeometry:
        return PageGeometry(self.PAGE_WIDTH_MM, self.PAGE_HEIGHT_MM, self.MARGIN_MM)


class PaletteStudio:
    """Glue between the UI callbacks and the palette/history/export modules."""

    def __init__(self, config: Config, history_store: HistoryStore):
        self.config = config
        self.history_store = history_store
        self.exporter = PaginatedExporter(quality=config.JPEG_QUALITY, title=TITLE)

    # --- history (persisted after every mutation) ---
    # Mutations start from the stored history, not a session's copy, so
    # several open tabs never overwrite each other's saves.
    def load_history(self) -> tuple[PaletteRecord, ...]:
        return self.history_store.load()

    def save_palette(self, draft: PaletteDraft) -> tuple[tuple[PaletteRecord, ...], PaletteDraft, bool]:
        history = self.history_store.load()
        new_history, new_draft = save_to_history(draft, history)
        saved = new_history is not history
        if saved:
            self.history_store.save(new_history)
        return new_history, new_draft, saved

    def delete_palette(self, record_id) -> tuple[PaletteRecord, ...]:
        new_history = delete_from_history(self.history_store.load(), record_id)
        self.history_store.save(new_history)
        return new_history

    # --- export ---
    def export_pdf(self, draft: PaletteDraft) -> Path:
        snap = render_snapshot(draft, scale=self.config.SNAPSHOT_SCALE)
        doc = self.exporter.export(snap, self.config.geometry)
        self.config.export_dir.mkdir(parents=True, exist_ok=True)
        # one directory per export so concurrent sessions keep the fixed file name
        out_dir = Path(tempfile.mkdtemp(prefix="palette-", dir=self.config.export_dir))
        path = out_dir / self.config.EXPORT_FILENAME
        doc.save(path)
        logger.info("Wrote %s (%d pages)", path, doc.page_count)
        return path

    # --- selectors ---
    @staticmethod
    def color_choices(draft: PaletteDraft) -> list[tuple[str, str]]:
        choices = []
        for i, entry in enumerate(draft.colors, start=1):
            label = f"{i}. {(entry.color or '(empty)').upper()}"
            if entry.images:
                label += f" ({len(entry.images)} photo{'s' if len(entry.images) != 1 else ''})"
            choices.append((label, str(entry.id)))
        return choices

    @staticmethod
    def resolve_color_id(draft: PaletteDraft, value: str | None):
        # dropdown values are strings; stored ids may be ints
        for entry in draft.colors:
            if str(entry.id) == str(value):
                return entry.id
        return None

    @staticmethod
    def resolve_record_id(history: tuple[PaletteRecord, ...], value: str | None):
        for record in history:
            if str(record.id) == str(value):
                return record.id
        return None

    @staticmethod
    def history_choices(history: tuple[PaletteRecord, ...]) -> list[tuple[str, str]]:
        choices = []
        for record in history:
            colors = " ".join(c.color.upper() for c in record.colors[:5])
            more = "…" if len(record.colors) > 5 else ""
            choices.append((f"{record.date} · {colors}{more}", str(record.id)))
        return choices

    # --- HTML ---
    def format_palette_html(self, draft: PaletteDraft) -> str:
        if not draft.colors:
            return "<div class='palette-empty'>No colours yet. Add one to start the palette.</div>"

        segments = []
        for entry in draft.colors:
            hx = entry.color or "#ffffff"
            text_color = text_color_for_bg(hx)
            badge = f"<small>{len(entry.images)}/{MAX_IMAGES_PER_COLOR} 📷</small>" if entry.images else ""
            segments.append(
                f"<div class='palette-segment' style='background:{html.escape(hx)};color:{text_color};' "
                f"title='{html.escape(hx.upper())}'><span>{html.escape(hx.upper())}</span>{badge}</div>"
            )
        return (
            "<div class='palette-progress-wrapper'>"
            f"<div class='palette-title'>Colour Palette ({len(draft.colors)})</div>"
            "<div class='palette-progress-bar'>" + "".join(segments) + "</div>"
            "</div>"
        )

    def format_history_html(self, history: tuple[PaletteRecord, ...]) -> str:
        if not history:
            return "<div class='palette-empty'>No saved palettes yet. Create one!</div>"

        cards = []
        for record in history:
            dots = "".join(
                f"<span class='history-dot' style='background:{html.escape(c.color)};'></span>" for c in record.colors
            )
            notes = html.escape(record.notes) if record.notes else "<em>No notes</em>"
            cards.append(
                "<div class='history-card'>"
                f"<div class='history-date'>{html.escape(record.date)}</div>"
                f"<div class='history-dots'>{dots}</div>"
                f"<div class='history-notes'>{notes}</div>"
                "</div>"
            )
        return (
            f"<div class='history-title'>Saved Palettes ({len(history)})</div>"
            "<div class='history-grid'>" + "".join(cards) + "</div>"
        )


# -------------------------------------------------
# UI
# -------------------------------------------------

CSS = """
<style>
:root {
    --indigo: #4f46e5;
    --indigo-dark: #4338ca;
}

#app_header {
    text-align: center;
    padding: 18px 0 6px;
}

#app_header h1 {
    color: var(--indigo-dark);
    font-size: 2.2rem;
    font-weight: 700;
    margin: 0;
}

.palette-progress-wrapper {
    display: flex;
    flex-direction: column;
    gap: 8px;
}

.palette-title, .history-title {
    font-weight: 700;
    font-size: 1.1rem;
    color: #1f2937;
}

.palette-progress-bar {
    display: flex;
    width: 100%;
    min-height: 72px;
    border-radius: 14px;
    overflow: hidden;
    box-shadow: 0 4px 14px rgba(0, 0, 0, 0.12);
}

.palette-segment {
    flex: 1 1 0;
    display: flex;
    flex-direction: column;
    align-items: center;
    justify-content: center;
    font-family: "JetBrains Mono", Consolas, monospace;
    font-size: 0.8rem;
}

.palette-empty {
    padding: 18px;
    color: #6b7280;
    font-style: italic;
    text-align: center;
}

.history-grid {
    display: grid;
    grid-template-columns: repeat(auto-fill, minmax(220px, 1fr));
    gap: 14px;
    margin-top: 10px;
}

.history-card {
    padding: 14px;
    background: #f9fafb;
    border: 1px solid #e5e7eb;
    border-radius: 12px;
}

.history-date {
    font-size: 0.8rem;
    color: #6b7280;
    margin-bottom: 6px;
}

.history-dots {
    display: flex;
    gap: 4px;
    margin-bottom: 6px;
}

.history-dot {
    width: 22px;
    height: 22px;
    border-radius: 50%;
    border: 1px solid #d1d5db;
}

.history-notes {
    font-size: 0.85rem;
    color: #4b5563;
    font-style: italic;
    display: -webkit-box;
    -webkit-line-clamp: 3;
    -webkit-box-orient: vertical;
    overflow: hidden;
}
</style>
"""


class PaletteSession:
    """UI callbacks for one browser session.

    Each callback takes the session's state values and returns the tuple of
    component updates that ``create_ui`` wires to its outputs.
    """

    def __init__(self, studio: PaletteStudio):
        self.studio = studio

    def _photos(self, draft: PaletteDraft, color_id) -> list[Image.Image]:
        entry = draft.find(color_id)
        out = []
        for url in entry.images if entry else ():
            try:
                out.append(data_url_to_image(url))
            except ValueError as e:
                logger.warning("Cannot show reference photo: %s", e)
        return out

    def draft_view(self, draft: PaletteDraft, selected=None, status: str = "", clear_upload: bool = False):
        """Everything the palette editor shows, in the order of ``draft_outputs``."""
        studio = self.studio
        if studio.resolve_color_id(draft, selected) is None:
            selected = draft.colors[-1].id if draft.colors else None
        entry = draft.find(selected) if selected is not None else None
        photo_choices = [(f"Photo {i}", str(i - 1)) for i in range(1, len(entry.images) + 1)] if entry else []
        can_upload = bool(entry) and len(entry.images) < MAX_IMAGES_PER_COLOR
        return (
            draft,
            studio.format_palette_html(draft),
            gr.update(choices=studio.color_choices(draft), value=str(selected) if selected is not None else None),
            gr.update(value=entry.color if entry and entry.color else "#ffffff"),
            self._photos(draft, selected),
            gr.update(choices=photo_choices, value=photo_choices[0][1] if photo_choices else None),
            gr.update(interactive=can_upload, **({"value": None} if clear_upload else {})),
            draft.notes,
            status,
        )

    def history_view(self, history: tuple[PaletteRecord, ...]):
        choices = self.studio.history_choices(history)
        return (
            history,
            self.studio.format_history_html(history),
            gr.update(choices=choices, value=choices[0][1] if choices else None),
        )

    def on_page_load(self, draft):
        # the stored history may have changed since this session's state was created
        return self.draft_view(draft, None) + self.history_view(self.studio.load_history())

    # --- palette editing ---
    def on_select(self, draft, selected):
        return self.draft_view(draft, self.studio.resolve_color_id(draft, selected))

    def on_pick(self, draft, selected, color):
        color_id = self.studio.resolve_color_id(draft, selected)
        if color_id is None or not color:
            return self.draft_view(draft, color_id)
        try:
            return self.draft_view(set_color(draft, color_id, color), color_id)
        except ValueError as e:
            return self.draft_view(draft, color_id, f"⚠️ {e}")

    def on_apply_text(self, draft, selected, raw):
        found = parse_colors(raw or "")
        color_id = self.studio.resolve_color_id(draft, selected)
        if color_id is None:
            return self.draft_view(draft, None, "⚠️ Select a colour first.")
        if not found:
            return self.draft_view(draft, color_id, "⚠️ No #RRGGBB or rgb(r, g, b) code found.")
        return self.draft_view(set_color(draft, color_id, found[0]), color_id)

    def on_add(self, draft):
        new_draft = add_color(draft)
        return self.draft_view(new_draft, new_draft.colors[-1].id)

    def on_remove(self, draft, selected):
        color_id = self.studio.resolve_color_id(draft, selected)
        return self.draft_view(remove_color(draft, color_id), None)

    def on_suggest(self, draft, selected, photo_idx):
        color_id = self.studio.resolve_color_id(draft, selected)
        entry = draft.find(color_id) if color_id is not None else None
        if not entry or not entry.images:
            return self.draft_view(draft, color_id, "⚠️ Attach a reference photo to this colour first.")
        idx = int(photo_idx) if photo_idx not in (None, "") else 0
        idx = min(max(idx, 0), len(entry.images) - 1)
        try:
            color = suggest_color(data_url_to_image(entry.images[idx]))
        except ValueError as e:
            return self.draft_view(draft, color_id, f"⚠️ {e}")
        return self.draft_view(set_color(draft, color_id, color), color_id, f"Picked {color.upper()} from photo {idx + 1}.")

    def on_upload(self, draft, selected, image: Image.Image | None):
        color_id = self.studio.resolve_color_id(draft, selected)
        if image is None or color_id is None:
            return self.draft_view(draft, color_id)
        entry = draft.find(color_id)
        if len(entry.images) >= MAX_IMAGES_PER_COLOR:
            return self.draft_view(draft, color_id, f"⚠️ Maximum of {MAX_IMAGES_PER_COLOR} photos per colour.")
        url = image_to_data_url(image, max_side=self.studio.config.PHOTO_MAX_SIDE, fmt="JPEG")
        # clear the upload slot so the next photo can be dropped in
        return self.draft_view(attach_image(draft, color_id, url), color_id, clear_upload=True)

    def on_remove_photo(self, draft, selected, photo_idx):
        color_id = self.studio.resolve_color_id(draft, selected)
        entry = draft.find(color_id) if color_id is not None else None
        if not entry or photo_idx in (None, ""):
            return self.draft_view(draft, color_id)
        idx = int(photo_idx)
        if not 0 <= idx < len(entry.images):
            return self.draft_view(draft, color_id)
        return self.draft_view(remove_image(draft, color_id, entry.images[idx]), color_id)

    def on_notes(self, draft, notes):
        return set_notes(draft, notes)

    # --- save / export ---
    def on_save(self, draft):
        new_history, new_draft, saved = self.studio.save_palette(draft)
        status = "✅ Palette saved to history." if saved else "⚠️ Nothing to save: add a colour or some notes."
        return self.draft_view(new_draft, None, status) + self.history_view(new_history)

    def on_pdf(self, draft):
        try:
            path = self.studio.export_pdf(draft)
        except InvalidInputError as e:
            logger.error("PDF export rejected: %s", e)
            return None, f"⚠️ Could not generate the PDF: {e}"
        return str(path), f"📄 {path.name} ready."

    # --- history ---
    def on_load(self, draft, history, selected):
        record = find_record(history, self.studio.resolve_record_id(history, selected))
        if record is None:
            return self.draft_view(draft, None, "⚠️ Select a saved palette.") + (
                gr.update(visible=False), gr.update(visible=True)
            )
        return self.draft_view(load_from_history(record), None, f"Loaded palette from {record.date}.") + (
            gr.update(visible=True), gr.update(visible=False)
        )

    def on_delete(self, history, selected):
        record_id = self.studio.resolve_record_id(history, selected)
        if record_id is None:
            return self.history_view(history)
        return self.history_view(self.studio.delete_palette(record_id))


def create_ui(studio: PaletteStudio, initial_history: tuple[PaletteRecord, ...] = ()):
    session = PaletteSession(studio)

    with gr.Blocks(title=TITLE) as demo:
        gr.HTML(CSS)
        gr.HTML(
            f"<div id='app_header'><h1>{TITLE}</h1>"
            "<p>Colour palettes and reference photos for services and events.</p></div>"
        )

        draft_state = gr.State(default_draft())
        history_state = gr.State(tuple(initial_history))

        with gr.Row(elem_id="view_toggle"):
            new_view_btn = gr.Button("New Palette", variant="primary")
            history_view_btn = gr.Button("View History", variant="secondary")

        with gr.Column(visible=True, elem_id="palette_view") as palette_view:
            palette_html = gr.HTML(studio.format_palette_html(default_draft()))
            with gr.Row():
                with gr.Column(scale=5):
                    color_select = gr.Dropdown(label="Colour", choices=[], interactive=True)
                    with gr.Row():
                        color_picker = gr.ColorPicker(label="Pick", value="#ffffff", interactive=True)
                        color_text = gr.Textbox(label="Hex or rgb()", placeholder="#93C5FD or rgb(147, 197, 253)")
                    with gr.Row():
                        apply_text_btn = gr.Button("Apply Code")
                        add_color_btn = gr.Button("Add Colour")
                        remove_color_btn = gr.Button("Remove Colour", variant="stop")
                        suggest_btn = gr.Button("Use Photo Colour")
                with gr.Column(scale=5):
                    photo_upload = gr.Image(
                        type="pil", label=f"Add reference photo (max {MAX_IMAGES_PER_COLOR} per colour)"
                    )
                    photo_gallery = gr.Gallery(label="Reference photos", columns=3, height=160)
                    with gr.Row():
                        photo_select = gr.Dropdown(label="Photo", choices=[], interactive=True)
                        remove_photo_btn = gr.Button("Remove Photo")
            notes_box = gr.Textbox(
                label="Notes", lines=4, placeholder="Add notes about the style, vibe or suggestions..."
            )
            with gr.Row():
                save_btn = gr.Button("Save Palette", variant="primary")
                pdf_btn = gr.Button("Generate PDF")
            pdf_file = gr.File(label="PDF", interactive=False)
            status_md = gr.Markdown()

        with gr.Column(visible=False, elem_id="history_view") as history_view:
            history_html = gr.HTML(studio.format_history_html(tuple(initial_history)))
            with gr.Row():
                history_select = gr.Dropdown(label="Saved palette", choices=studio.history_choices(tuple(initial_history)), interactive=True)
                load_btn = gr.Button("Load", variant="primary")
                delete_btn = gr.Button("Delete")

        draft_outputs = [
            draft_state, palette_html, color_select, color_picker, photo_gallery,
            photo_select, photo_upload, notes_box, status_md,
        ]
        history_outputs = [history_state, history_html, history_select]

        # --- view toggle ---
        def show_palette():
            return gr.update(visible=True), gr.update(visible=False)

        def show_history():
            return gr.update(visible=False), gr.update(visible=True)

        new_view_btn.click(fn=show_palette, inputs=None, outputs=[palette_view, history_view])
        history_view_btn.click(fn=show_history, inputs=None, outputs=[palette_view, history_view])

        # --- palette editing ---
        color_select.input(fn=session.on_select, inputs=[draft_state, color_select], outputs=draft_outputs)
        color_picker.input(fn=session.on_pick, inputs=[draft_state, color_select, color_picker], outputs=draft_outputs)
        apply_text_btn.click(fn=session.on_apply_text, inputs=[draft_state, color_select, color_text], outputs=draft_outputs)
        add_color_btn.click(fn=session.on_add, inputs=[draft_state], outputs=draft_outputs)
        remove_color_btn.click(fn=session.on_remove, inputs=[draft_state, color_select], outputs=draft_outputs)
        suggest_btn.click(fn=session.on_suggest, inputs=[draft_state, color_select, photo_select], outputs=draft_outputs)
        photo_upload.upload(fn=session.on_upload, inputs=[draft_state, color_select, photo_upload], outputs=draft_outputs)
        remove_photo_btn.click(
            fn=session.on_remove_photo, inputs=[draft_state, color_select, photo_select], outputs=draft_outputs
        )
        notes_box.input(fn=session.on_notes, inputs=[draft_state, notes_box], outputs=[draft_state])

        # --- save / export ---
        save_btn.click(fn=session.on_save, inputs=[draft_state], outputs=draft_outputs + history_outputs)
        pdf_btn.click(fn=session.on_pdf, inputs=[draft_state], outputs=[pdf_file, status_md])

        # --- history ---
        load_btn.click(
            fn=session.on_load,
            inputs=[draft_state, history_state, history_select],
            outputs=draft_outputs + [palette_view, history_view],
        )
        delete_btn.click(fn=session.on_delete, inputs=[history_state, history_select], outputs=history_outputs)

        demo.load(fn=session.on_page_load, inputs=[draft_state], outputs=draft_outputs + history_outputs)

    return demo


def main():
    cfg = Config()
    logging.basicConfig(level=getattr(logging, cfg.log_level, logging.INFO), format="%(levelname)s:%(name)s: %(message)s")

    studio = PaletteStudio(cfg, HistoryStore(JsonFileStore(cfg.history_path)))
    ui = create_ui(studio, studio.load_history())

    if cfg.electron_mode:
        # Run headless (no browser), bind to localhost only, no share links.
        ui.launch(
            server_name="127.0.0.1",
            server_port=cfg.server_port,
            inbrowser=False,
            share=False,
            prevent_thread_lock=False,
        )
    else:
        ui.launch(server_port=cfg.server_port, share=cfg.share)


if __name__ == "__main__":
    main()

import re

import numpy as np
from PIL import Image

from images import resize_preserve

_COLOR_RE = re.compile(
    r"(?i)#?\b([0-9a-f]{6})\b|rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*(?:,\s*[\d.]+\s*)?\)"
)


def hex_to_rgb(hex_color: str) -> tuple[int, int, int]:
    h = (hex_color or "").strip().lstrip("#")
    if len(h) != 6:
        raise ValueError(f"not a #RRGGBB colour: {hex_color!r}")
    try:
        return tuple(int(h[i : i + 2], 16) for i in (0, 2, 4))
    except ValueError as e:
        raise ValueError(f"not a #RRGGBB colour: {hex_color!r}") from e


def text_color_for_bg(hex_color: str) -> str:
    try:
        r, g, b = hex_to_rgb(hex_color)
    except ValueError:
        return "#000000"
    luminance = 0.299 * r + 0.587 * g + 0.114 * b
    return "#000000" if luminance > 150 else "#FFFFFF"


def parse_colors(raw: str) -> list[str]:
    """Extract colours from free text.

    Accepts:
    - Hex codes: #RRGGBB or RRGGBB (case-insensitive)
    - RGB tuples: rgb(r, g, b) or rgba(r, g, b, a) with 0-255 components
    Preserves first-seen order and removes duplicates. Returns upper-case
    ``#RRGGBB`` codes; out-of-range rgb() entries are ignored.
    """
    if not raw:
        return []

    seen: set[str] = set()
    ordered: list[str] = []
    for m in _COLOR_RE.finditer(raw):
        hex_part = m.group(1)
        if hex_part:
            full = f"#{hex_part.upper()}"
        else:
            r, g, b = int(m.group(2)), int(m.group(3)), int(m.group(4))
            if not (0 <= r <= 255 and 0 <= g <= 255 and 0 <= b <= 255):
                continue
            full = f"#{r:02X}{g:02X}{b:02X}"
        if full not in seen:
            seen.add(full)
            ordered.append(full)
    return ordered


def normalize_color(value: str) -> str:
    """Exactly one colour in, lower-case ``#rrggbb`` out (colour picker format)."""
    found = parse_colors(value)
    if len(found) != 1:
        raise ValueError(f"expected a single colour, got {value!r}")
    return found[0].lower()


def rgb_to_hsv_np(arr: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    # arr: (N,3) in [0,255]
    a = arr.astype(np.float32) / 255.0
    r, g, b = a[:, 0], a[:, 1], a[:, 2]
    cmax = np.max(a, axis=1)
    cmin = np.min(a, axis=1)
    delta = cmax - cmin + 1e-8
    h = np.zeros_like(cmax)
    mask = delta > 1e-7
    rc = ((g - b) / delta) % 6
    gc = ((b - r) / delta) + 2
    bc = ((r - g) / delta) + 4
    # 0=r,1=g,2=b
    choice = np.argmax(a == cmax[:, None], axis=1)
    h[mask & (choice == 0)] = rc[mask & (choice == 0)]
    h[mask & (choice == 1)] = gc[mask & (choice == 1)]
    h[mask & (choice == 2)] = bc[mask & (choice == 2)]
    h = (h / 6.0) % 1.0
    s = np.where(cmax <= 1e-7, 0.0, (cmax - cmin) / (cmax + 1e-8))
    v = cmax
    return h, s, v


def suggest_color(image: Image.Image) -> str:
    """Pick the dominant colour of a reference photo.

    Pixels are binned into a coarse 8x8x8 RGB grid; each pixel votes with a
    weight favouring the centre of the frame and saturated, reasonably bright
    tones. The winning bin's weighted mean is returned as ``#rrggbb``.
    """
    img = resize_preserve(image.convert("RGB"), 128)
    arr = np.asarray(img, dtype=np.float32)
    H, W, _ = arr.shape
    flat = arr.reshape(-1, 3)

    _, s, v = rgb_to_hsv_np(flat)
    yy, xx = np.mgrid[0:H, 0:W]
    cy, cx = (H - 1) / 2.0, (W - 1) / 2.0
    dist2 = ((yy - cy) ** 2 + (xx - cx) ** 2).astype(np.float32)
    dist2 = dist2 / (dist2.max() + 1e-8)
    center = np.exp(-2.5 * dist2).reshape(-1)
    weights = (center * (0.25 + s) * (0.2 + v)).astype(np.float64)

    bins = np.clip(flat // 32, 0, 7).astype(np.int64)
    keys = bins[:, 0] * 64 + bins[:, 1] * 8 + bins[:, 2]
    totals = np.bincount(keys, weights=weights, minlength=512)
    best = int(np.argmax(totals))

    mask = keys == best
    w = weights[mask]
    total = float(w.sum())
    if total > 0:
        mean_rgb = (flat[mask] * w[:, None]).sum(axis=0) / total
    else:
        mean_rgb = flat[mask].mean(axis=0)
    r, g, b = [int(np.clip(round(float(c)), 0, 255)) for c in mean_rgb]
    return f"#{r:02x}{g:02x}{b:02x}"

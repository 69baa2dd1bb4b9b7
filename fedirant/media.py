"""Media previews: picking targets, fetching/decoding and cell-art rasterizing."""

from dataclasses import dataclass
from functools import lru_cache
from io import BytesIO
import logging
import shutil
import subprocess
from typing import List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

import requests
from PIL import Image, ImageSequence

from .models import MediaAttachment
from .state import MediaState

logger = logging.getLogger("fedirant.media")

PREVIEW_WIDTH = 17
PREVIEW_HEIGHT = 14
SINGLE_WIDTH = 28
SINGLE_HEIGHT = 18
AVATAR_WIDTH = 12
AVATAR_HEIGHT = 8
MAX_FRAMES = 8
FFMPEG_TIMEOUT = 8.0
FETCH_TIMEOUT = 6.0
MAX_BYTES = 4 * 1024 * 1024
BACKGROUND = (12, 12, 12)


class MediaError(Exception):
    pass


@dataclass
class PreviewTarget:
    url: str
    fallback_url: str = ""
    animated: bool = False
    description: str = ""


def base_key(url: str) -> str:
    return "base|" + url


def single_key(url: str) -> str:
    return "single|" + url


def avatar_key(url: str) -> str:
    return "avatar|" + url


def is_avatar_key(key: str) -> bool:
    return key.startswith("avatar|")


def looks_like_gif(url: str) -> bool:
    try:
        path = urlsplit(url).path
    except ValueError:
        return ".gif" in url.lower()
    return path.lower().endswith(".gif")


def preview_targets(attachments: List[MediaAttachment]) -> List[PreviewTarget]:
    """Deduplicated preview targets in attachment order.

    Videos prefer the original file (frames come from it) with the still
    preview as fallback; images prefer the smaller preview.
    """
    out: List[PreviewTarget] = []
    seen = set()
    for m in attachments or []:
        kind = (m.kind or "").strip().lower()
        if kind in ("video", "gifv"):
            url = m.url.strip() or m.preview_url.strip()
            fallback = m.preview_url.strip()
            if fallback == url:
                fallback = ""
            target = PreviewTarget(url, fallback, True, m.description.strip())
        elif kind == "image":
            url = m.preview_url.strip() or m.url.strip()
            target = PreviewTarget(url, "", looks_like_gif(url), m.description.strip())
        else:
            continue
        if not url or url in seen:
            continue
        seen.add(url)
        out.append(target)
    return out


def open_urls(attachments: List[MediaAttachment]) -> List[str]:
    out: List[str] = []
    for m in attachments or []:
        url = m.url.strip() or m.preview_url.strip()
        if url and url not in out:
            out.append(url)
    return out


def single_target(attachments: List[MediaAttachment]) -> Optional[PreviewTarget]:
    """A high-resolution target when a post carries exactly one still image."""
    images = [m for m in attachments or [] if (m.kind or "").strip().lower() == "image"]
    if len(attachments or []) != 1 or len(images) != 1:
        return None
    m = images[0]
    url = m.url.strip() or m.preview_url.strip()
    if not url:
        return None
    fallback = m.preview_url.strip()
    return PreviewTarget(url, "" if fallback == url else fallback, looks_like_gif(url), m.description.strip())


def advance_frames(media: MediaState) -> None:
    for key, frames in media.frames.items():
        if len(frames) <= 1:
            continue
        idx = (media.frame_index.get(key, 0) + 1) % len(frames)
        media.frame_index[key] = idx
        media.previews[key] = frames[idx]


# --- rasterizing ---

def _sample_averaged_color(img: Image.Image, cell_x: int, cell_y: int, cells_w: int, cells_h: int) -> Tuple[int, int, int]:
    w, h = img.size
    fx0, fx1 = cell_x / cells_w, (cell_x + 1) / cells_w
    fy0, fy1 = cell_y / cells_h, (cell_y + 1) / cells_h
    points = (
        (fx0 * 0.75 + fx1 * 0.25, fy0 * 0.75 + fy1 * 0.25),
        (fx0 * 0.25 + fx1 * 0.75, fy0 * 0.75 + fy1 * 0.25),
        (fx0 * 0.75 + fx1 * 0.25, fy0 * 0.25 + fy1 * 0.75),
        (fx0 * 0.25 + fx1 * 0.75, fy0 * 0.25 + fy1 * 0.75),
    )
    r = g = b = 0
    for px, py in points:
        sx = min(int(px * w), w - 1)
        sy = min(int(py * h), h - 1)
        pr, pg, pb = img.getpixel((sx, sy))[:3]
        r += pr
        g += pg
        b += pb
    return r // 4, g // 4, b // 4


def render_ansi_thumbnail(img: Image.Image, w: int = PREVIEW_WIDTH, h: int = PREVIEW_HEIGHT) -> str:
    """Rasterize into ``h`` rows of ``w`` two-column truecolor cells, letterboxed."""
    if img.width <= 0 or img.height <= 0:
        return ""
    w = max(w, 4)
    h = max(h, 2)
    rgb = img.convert("RGB")

    draw_w = w
    draw_h = round(img.height * draw_w / img.width)
    if draw_h > h:
        draw_h = h
        draw_w = round(img.width * draw_h / img.height)
    draw_w = max(draw_w, 1)
    draw_h = max(draw_h, 1)
    off_x = (w - draw_w) // 2
    off_y = (h - draw_h) // 2

    rows = []
    for y in range(h):
        cells = []
        for x in range(w):
            color = BACKGROUND
            if off_x <= x < off_x + draw_w and off_y <= y < off_y + draw_h:
                color = _sample_averaged_color(rgb, x - off_x, y - off_y, draw_w, draw_h)
            cells.append("\x1b[48;2;%d;%d;%dm  \x1b[0m" % color)
        rows.append("".join(cells))
    return "\n".join(rows)


def render_frames_from_gif(data: bytes, w: int, h: int, max_frames: int = MAX_FRAMES) -> List[str]:
    try:
        img = Image.open(BytesIO(data))
    except (OSError, ValueError) as e:
        raise MediaError(f"decode gif: {e}") from e
    if getattr(img, "n_frames", 1) <= 1:
        raise MediaError("not animated")
    frames = []
    for frame in ImageSequence.Iterator(img):
        frames.append(render_ansi_thumbnail(frame.copy(), w, h))
        if len(frames) >= (max_frames if max_frames > 0 else MAX_FRAMES):
            break
    return frames


@lru_cache(maxsize=1)
def has_ffmpeg() -> bool:
    return shutil.which("ffmpeg") is not None


def render_frames_from_video(url: str, w: int, h: int, max_frames: int = MAX_FRAMES) -> List[str]:
    if not has_ffmpeg():
        raise MediaError("ffmpeg unavailable")
    max_frames = max_frames if max_frames > 0 else MAX_FRAMES
    vf = f"fps=4,scale={max(w * 2, 16)}:{max(h * 2, 8)}:flags=lanczos"
    cmd = [
        "ffmpeg", "-hide_banner", "-loglevel", "error",
        "-i", url,
        "-vf", vf,
        "-frames:v", str(max_frames),
        "-f", "gif", "-",
    ]
    try:
        proc = subprocess.run(cmd, capture_output=True, timeout=FFMPEG_TIMEOUT, check=True)
    except (subprocess.SubprocessError, OSError) as e:
        raise MediaError(f"ffmpeg: {e}") from e
    return render_frames_from_gif(proc.stdout, w, h, max_frames)


def _download(url: str) -> bytes:
    try:
        with requests.get(url, timeout=FETCH_TIMEOUT, stream=True) as resp:
            if resp.status_code < 200 or resp.status_code >= 300:
                raise MediaError(f"preview status {resp.status_code}")
            buf = bytearray()
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                buf.extend(chunk)
                if len(buf) >= MAX_BYTES:
                    break
            return bytes(buf[:MAX_BYTES])
    except requests.RequestException as e:
        raise MediaError(f"fetch {url}: {e}") from e


def load_static_preview(url: str, w: int, h: int, allow_gif_animation: bool = False) -> Tuple[str, List[str]]:
    data = _download(url)
    if allow_gif_animation:
        try:
            frames = render_frames_from_gif(data, w, h, MAX_FRAMES)
        except MediaError:
            frames = []
        if frames:
            return frames[0], frames
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (OSError, ValueError) as e:
        raise MediaError(f"decode {url}: {e}") from e
    return render_ansi_thumbnail(img, w, h), []


def strip_query(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def url_candidates(url: str, fallback_url: str = "") -> List[Tuple[str, bool]]:
    """(candidate, is_primary) in try order: url, url without query, then the same for fallback."""
    out: List[Tuple[str, bool]] = []
    seen = set()
    for raw, primary in ((url, True), (fallback_url, False)):
        raw = (raw or "").strip()
        if not raw:
            continue
        for candidate in (raw, strip_query(raw)):
            if candidate and candidate not in seen:
                seen.add(candidate)
                out.append((candidate, primary))
    return out


def fetch_preview(url: str, fallback_url: str, w: int, h: int, animated: bool) -> Tuple[str, List[str]]:
    """Produce (current frame, all frames) for a media URL.

    Animated media is first run through ffmpeg; then each URL candidate is
    downloaded and decoded until one succeeds.
    """
    if animated:
        try:
            frames = render_frames_from_video(url, w, h, MAX_FRAMES)
            if frames:
                return frames[0], frames
        except MediaError as e:
            logger.debug("frame extraction failed for %s: %s", url, e)

    last_error: Optional[Exception] = None
    for candidate, primary in url_candidates(url, fallback_url):
        try:
            return load_static_preview(candidate, w, h, animated and primary)
        except MediaError as e:
            last_error = e
            logger.debug("preview candidate %s failed: %s", candidate, e)
    raise MediaError(str(last_error) if last_error else "no preview URL")

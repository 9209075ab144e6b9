"""Image helpers and the Pillow-backed print surface."""

import base64
import io
import os
import shutil
import subprocess
import sys
import tempfile
from enum import Enum
from html.parser import HTMLParser
from urllib.parse import unquote_to_bytes, urlparse
from urllib.request import url2pathname

import requests
from PIL import Image, ImageDraw, ImageFont, ImageOps

from fabric_form.errors import ImageLoadError, PrintFailed
from fabric_form.print_dispatcher import RenderingSurface


DEFAULT_IMAGE_TIMEOUT = 30
PAGE_PADDING = 20  # Matches the padding of the print document body


class VerifyResult(Enum):
    """Result of QR scannability verification."""
    SCANNABLE = "scannable"
    NOT_SCANNABLE = "not_scannable"
    SKIPPED = "skipped"  # pyzbar not installed


def fetch_image(url: str, timeout: float = DEFAULT_IMAGE_TIMEOUT) -> Image.Image:
    """Load an image from an http(s) URL, a data: URI, a file:// URL or a path.

    Raises:
        ImageLoadError: If the resource cannot be fetched or is not an image.
    """
    parsed = urlparse(url)
    try:
        if parsed.scheme in ("http", "https"):
            r = requests.get(url, timeout=timeout)
            r.raise_for_status()
            raw = r.content
        elif parsed.scheme == "data":
            header, _, payload = url.partition(",")
            if header.endswith(";base64"):
                raw = base64.b64decode(payload)
            else:
                raw = unquote_to_bytes(payload)
        elif parsed.scheme == "file":
            with open(url2pathname(parsed.path), "rb") as f:
                raw = f.read()
        elif parsed.scheme and len(parsed.scheme) > 1:
            raise ImageLoadError(f"Unsupported image URL scheme '{parsed.scheme}': {url}")
        else:
            with open(url, "rb") as f:
                raw = f.read()

        img = Image.open(io.BytesIO(raw))
        img.load()
        return img
    except (requests.RequestException, OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageLoadError(f"Could not load QR code image '{url}': {e}") from e


def save_qr_image(url: str, output_path: str) -> str:
    """Download the QR code image and save it to ``output_path``.

    The format follows the output extension (e.g. a .webp source saved as .png).

    Returns:
        The output path where the image was saved.
    """
    img = fetch_image(url)
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)

    ext = os.path.splitext(output_path)[1].lower()
    if ext in (".jpg", ".jpeg") and img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    img.save(output_path)
    return output_path


def verify_qr_scannable(image_path: str) -> tuple[VerifyResult, str | None]:
    """Attempt to decode a QR code from a saved image.

    Uses pyzbar if available, otherwise returns SKIPPED.

    Returns:
        Tuple of (VerifyResult, decoded_data: str | None).
    """
    try:
        from pyzbar.pyzbar import decode as pyzbar_decode
    except ImportError:
        return VerifyResult.SKIPPED, None

    try:
        img = Image.open(image_path)
        results = pyzbar_decode(img)
        if results:
            return VerifyResult.SCANNABLE, results[0].data.decode("utf-8")
        return VerifyResult.NOT_SCANNABLE, None
    except Exception:
        return VerifyResult.NOT_SCANNABLE, None


# ---------------------------------------------------------------------------
# Print surface
# ---------------------------------------------------------------------------

class _PrintDocumentParser(HTMLParser):
    """Collects the title, heading and image sources of a print document."""

    def __init__(self):
        super().__init__()
        self.title = ""
        self.heading = ""
        self.image_urls: list[str] = []
        self._in = None

    def handle_starttag(self, tag, attrs):
        if tag == "img":
            src = dict(attrs).get("src")
            if src:
                self.image_urls.append(src)
        elif tag in ("title", "h1", "h2", "h3"):
            self._in = tag

    def handle_endtag(self, tag):
        if tag == self._in:
            self._in = None

    def handle_data(self, data):
        if self._in == "title":
            self.title += data.strip()
        elif self._in and not self.heading:
            self.heading = data.strip()


def find_print_command() -> str | None:
    """Return the system print command (lp or lpr), or None if missing."""
    return shutil.which("lp") or shutil.which("lpr")


class ImageSurface(RenderingSurface):
    """Renders a print document to a Pillow page and sends it to a printer.

    Only the document's first heading and its images are rendered; the
    images are fitted into the page below the heading.
    """

    def __init__(self, width: int, height: int, print_command: str | None = None):
        self.width = width
        self.height = height
        self.print_command = print_command
        self.onload = None
        self.document: str | None = None
        self.title = ""
        self.heading = ""
        self.image_urls: list[str] = []
        self.page: Image.Image | None = None
        self.page_path: str | None = None
        self.closed = False
        self._tmpdir = tempfile.mkdtemp(prefix="fabric_qr_print_")

    def write(self, document: str) -> None:
        parser = _PrintDocumentParser()
        parser.feed(document)
        parser.close()
        self.document = document
        self.title = parser.title
        self.heading = parser.heading
        self.image_urls = parser.image_urls

    def load(self) -> None:
        images = [fetch_image(url) for url in self.image_urls]
        self.page = self._render(images)
        self.page_path = os.path.join(self._tmpdir, "page.png")
        self.page.save(self.page_path, "PNG")
        if self.onload is not None:
            self.onload()

    def _render(self, images: list[Image.Image]) -> Image.Image:
        page = Image.new("RGB", (self.width, self.height), "white")
        draw = ImageDraw.Draw(page)
        top = PAGE_PADDING

        if self.heading:
            font = ImageFont.load_default()
            left, upper, right, lower = draw.textbbox((0, 0), self.heading, font=font)
            draw.text(
                ((self.width - (right - left)) // 2, top),
                self.heading,
                fill="black",
                font=font,
            )
            top += (lower - upper) + PAGE_PADDING

        if not images:
            return page

        # Images share the remaining height evenly, stacked vertically
        box_w = max(1, self.width - 2 * PAGE_PADDING)
        slot_h = max(1, (self.height - top - PAGE_PADDING) // len(images))
        for img in images:
            fitted = ImageOps.contain(img.convert("RGB"), (box_w, slot_h))
            x = (self.width - fitted.width) // 2
            y = top + (slot_h - fitted.height) // 2
            page.paste(fitted, (x, y))
            top += slot_h
        return page

    def print(self) -> None:
        if self.page_path is None:
            raise PrintFailed("Nothing to print: the page has not finished loading.")
        try:
            if sys.platform == "win32":
                os.startfile(self.page_path, "print")
            else:
                if not self.print_command:
                    raise PrintFailed("No print command available (install CUPS 'lp' or 'lpr').")
                subprocess.run(
                    [self.print_command, self.page_path],
                    check=True,
                    capture_output=True,
                )
        except (OSError, subprocess.CalledProcessError) as e:
            raise PrintFailed(f"Printing failed: {e}") from e

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        shutil.rmtree(self._tmpdir, ignore_errors=True)


def open_image_surface(width: int, height: int) -> ImageSurface | None:
    """Open a print surface, or return None when this system cannot print."""
    if sys.platform == "win32":
        return ImageSurface(width, height)

    command = find_print_command()
    if command is None:
        return None
    return ImageSurface(width, height, print_command=command)

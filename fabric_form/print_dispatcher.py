"""Open a print surface for a QR code image and print it once loaded."""

import html
from abc import ABC, abstractmethod
from typing import Callable

from fabric_form import PRINT_SURFACE_SIZE
from fabric_form.errors import NoQrAvailable, PrintWindowBlocked


PRINT_DOCUMENT_TEMPLATE = """<html>
  <head>
    <title>Print QR Code</title>
    <style>
      body {{
        display: flex;
        justify-content: center;
        align-items: center;
        padding: 20px;
        font-family: Arial, sans-serif;
      }}
      img {{
        max-width: 100%;
        height: auto;
      }}
    </style>
  </head>
  <body>
    <h2 style="text-align: center;">QR Code</h2>
    <img src="{src}" alt="QR Code">
  </body>
</html>
"""


def build_print_document(qr_code_url: str) -> str:
    """Return a self-contained HTML page that shows only the QR image."""
    return PRINT_DOCUMENT_TEMPLATE.format(src=html.escape(qr_code_url, quote=True))


class RenderingSurface(ABC):
    """A secondary display context that can render a document and print it.

    ``load()`` resolves the resources of the written document and then calls
    ``onload``, if set. Surfaces may call ``onload`` later, from their own
    event source, instead of before ``load()`` returns.
    """

    onload: Callable[[], None] | None = None

    @abstractmethod
    def write(self, document: str) -> None:
        ...

    @abstractmethod
    def load(self) -> None:
        ...

    @abstractmethod
    def print(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


SurfaceOpener = Callable[[int, int], "RenderingSurface | None"]


def _default_opener(width: int, height: int) -> RenderingSurface | None:
    # Lazy import keeps Pillow out of the import path until printing
    from fabric_form.image_utils import open_image_surface
    return open_image_surface(width, height)


class PrintDispatcher:
    """Prints a QR code image through a freshly opened rendering surface."""

    def __init__(
        self,
        open_surface: SurfaceOpener = _default_opener,
        size: tuple[int, int] = PRINT_SURFACE_SIZE,
    ):
        self._open_surface = open_surface
        self.size = size

    def print_qr(self, qr_code_url: str | None) -> RenderingSurface:
        """Print the image at ``qr_code_url``.

        Returns:
            The surface that was opened. Printing happens when it finishes
            loading, then the surface is closed.

        Raises:
            NoQrAvailable: If there is no URL yet.
            PrintWindowBlocked: If the surface could not be opened.
        """
        if not qr_code_url:
            raise NoQrAvailable("No QR code available to print.")

        width, height = self.size
        surface = self._open_surface(width, height)
        if surface is None:
            raise PrintWindowBlocked("Failed to open print window.")

        surface.write(build_print_document(qr_code_url))

        def _on_load() -> None:
            try:
                surface.print()
            finally:
                surface.close()

        surface.onload = _on_load
        try:
            surface.load()
        except Exception:
            surface.close()
            raise
        return surface

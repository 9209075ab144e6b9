import base64
import io
import os
import subprocess
import sys
import types
from unittest import mock

import pytest
import requests
from PIL import Image

from fabric_form import image_utils
from fabric_form.errors import ImageLoadError, PrintFailed
from fabric_form.image_utils import (
    ImageSurface,
    VerifyResult,
    fetch_image,
    open_image_surface,
    save_qr_image,
    verify_qr_scannable,
)
from fabric_form.form import FabricForm
from fabric_form.print_dispatcher import PrintDispatcher, build_print_document
from tests.fakes import COTTON, FakeClient, qr_response


def png_bytes(size=(50, 50), color="black", mode="RGB"):
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, "PNG")
    return buf.getvalue()


@pytest.fixture
def qr_png(tmp_path):
    path = tmp_path / "qr.png"
    path.write_bytes(png_bytes())
    return str(path)


class TestFetchImage:
    def test_local_path(self, qr_png):
        assert fetch_image(qr_png).size == (50, 50)

    def test_file_url(self, qr_png):
        img = fetch_image("file://" + qr_png)
        assert img.size == (50, 50)

    def test_data_uri(self):
        uri = "data:image/png;base64," + base64.b64encode(png_bytes((8, 8))).decode()
        assert fetch_image(uri).size == (8, 8)

    def test_http(self):
        response = mock.Mock(content=png_bytes((20, 10)))
        with mock.patch("fabric_form.image_utils.requests.get", return_value=response) as get:
            img = fetch_image("https://x/y.png", timeout=3)
        get.assert_called_once_with("https://x/y.png", timeout=3)
        assert img.size == (20, 10)

    def test_http_error(self):
        with mock.patch(
            "fabric_form.image_utils.requests.get",
            side_effect=requests.ConnectionError("refused"),
        ):
            with pytest.raises(ImageLoadError, match="refused"):
                fetch_image("https://x/y.png")

    def test_not_an_image(self, tmp_path):
        path = tmp_path / "qr.png"
        path.write_text("not an image")
        with pytest.raises(ImageLoadError):
            fetch_image(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ImageLoadError):
            fetch_image(str(tmp_path / "missing.png"))

    def test_unsupported_scheme(self):
        with pytest.raises(ImageLoadError, match="ftp"):
            fetch_image("ftp://x/y.png")

    def test_oversized_image(self, qr_png, monkeypatch):
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)
        with pytest.raises(ImageLoadError):
            fetch_image(qr_png)


class TestSaveQrImage:
    def test_saves_with_conversion(self, tmp_path, qr_png):
        out = tmp_path / "labels" / "qr.jpg"
        assert save_qr_image(qr_png, str(out)) == str(out)
        with Image.open(out) as img:
            assert img.format == "JPEG"

    def test_rgba_to_jpeg(self, tmp_path):
        src = tmp_path / "qr_rgba.png"
        src.write_bytes(png_bytes(mode="RGBA", color=(0, 0, 0, 255)))
        out = tmp_path / "qr.jpeg"
        save_qr_image(str(src), str(out))
        with Image.open(out) as img:
            assert img.mode == "RGB"


class TestVerifyQrScannable:
    def test_skipped_without_pyzbar(self, qr_png, monkeypatch):
        monkeypatch.setitem(sys.modules, "pyzbar", None)
        monkeypatch.setitem(sys.modules, "pyzbar.pyzbar", None)
        assert verify_qr_scannable(qr_png) == (VerifyResult.SKIPPED, None)

    @staticmethod
    def _stub_pyzbar(monkeypatch, decode):
        package = types.ModuleType("pyzbar")
        module = types.ModuleType("pyzbar.pyzbar")
        module.decode = decode
        package.pyzbar = module
        monkeypatch.setitem(sys.modules, "pyzbar", package)
        monkeypatch.setitem(sys.modules, "pyzbar.pyzbar", module)

    def test_decoded(self, qr_png, monkeypatch):
        self._stub_pyzbar(monkeypatch, lambda img: [mock.Mock(data=b"https://x/y")])
        assert verify_qr_scannable(qr_png) == (VerifyResult.SCANNABLE, "https://x/y")

    def test_non_utf8_payload(self, qr_png, monkeypatch):
        self._stub_pyzbar(monkeypatch, lambda img: [mock.Mock(data=b"\xff\xfe")])
        assert verify_qr_scannable(qr_png) == (VerifyResult.NOT_SCANNABLE, None)

    def test_decoder_error(self, qr_png, monkeypatch):
        def _boom(img):
            raise RuntimeError("zbar failed")

        self._stub_pyzbar(monkeypatch, _boom)
        assert verify_qr_scannable(qr_png) == (VerifyResult.NOT_SCANNABLE, None)


class TestImageSurface:
    def test_write_collects_references(self):
        surface = ImageSurface(600, 600)
        try:
            surface.write(build_print_document("https://x/y.png?a=1&b=2"))
            assert surface.title == "Print QR Code"
            assert surface.heading == "QR Code"
            assert surface.image_urls == ["https://x/y.png?a=1&b=2"]
        finally:
            surface.close()

    def test_load_renders_page_and_fires_onload(self, qr_png):
        surface = ImageSurface(600, 600)
        loaded = []
        surface.onload = lambda: loaded.append(surface.page_path)
        surface.write(build_print_document(qr_png))

        surface.load()

        assert loaded and os.path.exists(loaded[0])
        assert surface.page.size == (600, 600)
        # QR is scaled up into the centre of the page
        assert surface.page.getpixel((300, 320)) == (0, 0, 0)
        assert surface.page.getpixel((5, 5)) == (255, 255, 255)
        surface.close()

    def test_load_failure_does_not_fire_onload(self, tmp_path):
        surface = ImageSurface(600, 600)
        surface.onload = mock.Mock()
        surface.write(build_print_document(str(tmp_path / "missing.png")))
        with pytest.raises(ImageLoadError):
            surface.load()
        surface.onload.assert_not_called()
        surface.close()

    def test_print_before_load(self):
        surface = ImageSurface(600, 600, print_command="lp")
        with pytest.raises(PrintFailed):
            surface.print()
        surface.close()

    def test_print_runs_command(self, qr_png, monkeypatch):
        monkeypatch.setattr(sys, "platform", "linux")
        surface = ImageSurface(600, 600, print_command="/usr/bin/lp")
        surface.write(build_print_document(qr_png))
        surface.load()
        with mock.patch("fabric_form.image_utils.subprocess.run") as run:
            surface.print()
        run.assert_called_once_with(
            ["/usr/bin/lp", surface.page_path], check=True, capture_output=True
        )
        surface.close()

    def test_print_command_failure(self, qr_png, monkeypatch):
        monkeypatch.setattr(sys, "platform", "linux")
        surface = ImageSurface(600, 600, print_command="/usr/bin/lp")
        surface.write(build_print_document(qr_png))
        surface.load()
        error = subprocess.CalledProcessError(1, ["lp"])
        with mock.patch("fabric_form.image_utils.subprocess.run", side_effect=error):
            with pytest.raises(PrintFailed):
                surface.print()
        surface.close()

    def test_close_removes_files(self, qr_png):
        surface = ImageSurface(600, 600)
        surface.write(build_print_document(qr_png))
        surface.load()
        tmpdir = os.path.dirname(surface.page_path)
        surface.close()
        surface.close()
        assert surface.closed
        assert not os.path.exists(tmpdir)


class TestOpenImageSurface:
    def test_blocked_without_print_command(self, monkeypatch):
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.setattr(image_utils.shutil, "which", lambda name: None)
        assert open_image_surface(600, 600) is None

    def test_prefers_lp(self, monkeypatch):
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.setattr(image_utils.shutil, "which", lambda name: f"/usr/bin/{name}")
        surface = open_image_surface(600, 600)
        assert surface.print_command == "/usr/bin/lp"
        assert (surface.width, surface.height) == (600, 600)
        surface.close()

    def test_dispatcher_prints_through_surface(self, qr_png, monkeypatch):
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.setattr(image_utils.shutil, "which", lambda name: "/usr/bin/lpr" if name == "lpr" else None)
        with mock.patch("fabric_form.image_utils.subprocess.run") as run:
            surface = PrintDispatcher().print_qr(qr_png)
        assert run.call_args[0][0][0] == "/usr/bin/lpr"
        assert surface.closed

    def test_oversized_image_alerts_from_form(self, qr_png, monkeypatch):
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)
        alerts = []
        dispatcher = PrintDispatcher(
            open_surface=lambda w, h: ImageSurface(w, h, print_command="/usr/bin/lp")
        )
        form = FabricForm(
            FakeClient(response=qr_response(qr_png)),
            dispatcher=dispatcher,
            alert=alerts.append,
        )
        for name, value in COTTON.items():
            form.update_field(name, value)
        form.submit()

        with mock.patch("fabric_form.image_utils.subprocess.run") as run:
            assert form.print_qr_code() is False
        run.assert_not_called()
        assert alerts[-1].startswith("Could not load QR code image")

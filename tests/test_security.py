"""Tests for security validation gates and PII stripping."""

import pytest

from security import (
    ALLOWED_EXTENSIONS,
    MAX_INPUT_SIZE,
    MAX_PIXELS,
    _HOME,
    strip_pii,
    validate_input_image,
    validate_output_path,
    validate_pixel_count,
)


class TestInputImage:
    def test_valid_png_accepted(self, png_path):
        assert validate_input_image(str(png_path)) == []

    def test_all_allowed_extensions(self, tmp_path):
        for ext in ALLOWED_EXTENSIONS:
            f = tmp_path / f"test{ext}"
            f.write_bytes(b"\x00" * 16)
            assert validate_input_image(str(f)) == [], f"{ext} should be allowed"

    def test_exe_rejected(self, tmp_path):
        f = tmp_path / "test.exe"
        f.write_bytes(b"\x00" * 16)
        errors = validate_input_image(str(f))
        assert any("not allowed" in e for e in errors)

    def test_nonexistent_file_rejected(self, tmp_path):
        errors = validate_input_image(str(tmp_path / "missing.png"))
        assert any("not found" in e.lower() for e in errors)

    def test_directory_rejected(self, tmp_path):
        d = tmp_path / "dir.png"
        d.mkdir()
        assert validate_input_image(str(d)) != []

    def test_symlink_rejected(self, png_path, tmp_path):
        link = tmp_path / "link.png"
        link.symlink_to(png_path)
        errors = validate_input_image(str(link))
        assert any("symlink" in e.lower() for e in errors)

    def test_oversized_file_rejected(self, tmp_path):
        f = tmp_path / "big.png"
        # Sparse file: tests the size check without writing 200MB
        with open(f, "wb") as fh:
            fh.seek(MAX_INPUT_SIZE + 1)
            fh.write(b"\x00")
        errors = validate_input_image(str(f))
        assert any("too large" in e.lower() for e in errors)


@pytest.mark.smoke
class TestPixelCount:
    def test_valid(self):
        assert validate_pixel_count(1920, 1080) == []

    def test_at_limit(self):
        assert validate_pixel_count(MAX_PIXELS, 1) == []

    def test_over_limit(self):
        errors = validate_pixel_count(MAX_PIXELS, 2)
        assert any("exceeds" in e for e in errors)


class TestOutputPath:
    def test_valid_path(self, tmp_path):
        assert validate_output_path(str(tmp_path / "out.png")) == []

    def test_relative_path_resolved(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert validate_output_path("out.png") == []

    def test_bad_extension(self, tmp_path):
        errors = validate_output_path(str(tmp_path / "out.exe"))
        assert any("not allowed" in e for e in errors)

    def test_missing_parent(self, tmp_path):
        errors = validate_output_path(str(tmp_path / "nope" / "out.png"))
        assert any("does not exist" in e for e in errors)

    def test_system_directory_blocked(self):
        errors = validate_output_path("/usr/share/out.png")
        assert any("system directory" in e for e in errors)

    def test_prefix_match_needs_separator(self, tmp_path):
        # "/usrdata" is not "/usr"
        errors = validate_output_path("/usrdata-does-not-exist/out.png")
        assert not any("system directory" in e for e in errors)


@pytest.mark.smoke
class TestStripPII:
    def test_home_path_redacted(self):
        event = {"message": f"failed to open {_HOME}/photos/cat.png"}
        cleaned = strip_pii(event, {})
        assert _HOME not in cleaned["message"]

    def test_user_paths_redacted(self):
        event = {"message": "failed to open /home/someone/cat.png"}
        cleaned = strip_pii(event, {})
        assert "/home/someone" not in cleaned["message"]

    def test_sensitive_extra_keys_redacted(self):
        event = {"extra": {"dsn": "https://secret", "frame": 3}}
        cleaned = strip_pii(event, {})
        assert cleaned["extra"]["dsn"] == "<REDACTED>"
        assert cleaned["extra"]["frame"] == 3

    def test_sensitive_context_keys_redacted(self):
        event = {"contexts": {"sweep": {"auth_token": "abc", "threshold": 7}}}
        cleaned = strip_pii(event, {})
        assert cleaned["contexts"]["sweep"]["auth_token"] == "<REDACTED>"
        assert cleaned["contexts"]["sweep"]["threshold"] == 7

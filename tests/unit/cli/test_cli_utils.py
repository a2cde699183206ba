"""Unit tests for CLI utilities."""

import pytest

from zephyr_tools.cli_utils import ErrorFormatter, PathValidator, parse_on_off
from zephyr_tools.project import ProjectError
from zephyr_tools.provisioning import PrerequisiteError


class TestErrorFormatter:
    """Tests for ErrorFormatter class."""

    def test_print_error(self, capsys):
        """Test error output carries the title and message."""
        ErrorFormatter.print_error("Build failed!", "west exited with code 1")
        out = capsys.readouterr().out
        assert "✗ Build failed!" in out
        assert "west exited with code 1" in out
        assert ErrorFormatter.RED in out

    def test_print_success(self, capsys):
        """Test success output is green."""
        ErrorFormatter.print_success("Init complete!")
        out = capsys.readouterr().out
        assert f"{ErrorFormatter.GREEN}✓ Init complete!{ErrorFormatter.RESET}" in out

    def test_handle_command_error_exits_1(self, capsys, tmp_path):
        """Test expected errors exit with code 1 and point at the log."""
        log_file = tmp_path / "zephyr-tools.log"
        with pytest.raises(SystemExit) as exc_info:
            ErrorFormatter.handle_command_error("Build failed!", ProjectError("no board"), log_file)

        assert exc_info.value.code == 1
        out = capsys.readouterr().out
        assert "no board" in out
        assert str(log_file) in out

    def test_handle_command_error_prints_hint(self, capsys):
        """Test prerequisite hints are shown."""
        error = PrerequisiteError("git", "git is not installed", "Install git.")
        with pytest.raises(SystemExit):
            ErrorFormatter.handle_command_error("Setup failed!", error)
        assert "Install git." in capsys.readouterr().out

    def test_handle_keyboard_interrupt(self):
        """Test interrupts exit with 130."""
        with pytest.raises(SystemExit) as exc_info:
            ErrorFormatter.handle_keyboard_interrupt()
        assert exc_info.value.code == 130

    def test_handle_unexpected_error_verbose(self, capsys):
        """Test verbose mode prints the traceback."""
        try:
            raise RuntimeError("kaboom")
        except RuntimeError as e:
            with pytest.raises(SystemExit) as exc_info:
                ErrorFormatter.handle_unexpected_error(e, verbose=True)
        assert exc_info.value.code == 1
        out = capsys.readouterr().out
        assert "RuntimeError: kaboom" in out
        assert "Traceback" in out


class TestPathValidator:
    """Tests for PathValidator."""

    def test_valid_directory(self, tmp_path):
        """Test an existing directory passes."""
        PathValidator.validate_directory(tmp_path)

    def test_missing_path(self, tmp_path):
        """Test a missing path exits with code 2."""
        with pytest.raises(SystemExit) as exc_info:
            PathValidator.validate_directory(tmp_path / "missing")
        assert exc_info.value.code == 2

    def test_file_path(self, tmp_path):
        """Test a file exits with code 2."""
        path = tmp_path / "file.txt"
        path.write_text("x")
        with pytest.raises(SystemExit) as exc_info:
            PathValidator.validate_directory(path)
        assert exc_info.value.code == 2


class TestParseOnOff:
    """Tests for parse_on_off."""

    @pytest.mark.parametrize("value", ["on", "ON", "true", "yes", "1"])
    def test_on(self, value):
        assert parse_on_off(value) is True

    @pytest.mark.parametrize("value", ["off", "False", "no", "0"])
    def test_off(self, value):
        assert parse_on_off(value) is False

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_on_off("maybe")

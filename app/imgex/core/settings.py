"""Export settings and their TOML persistence.

Settings control the adapters around the flattening core (output
compression, tar dialect, progress display). They never change how
layers are applied or how entries are ordered.

Settings are stored in ~/.config/imgex/settings.toml
"""

import os
import tomllib
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Annotated

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from imgex.core.errors import ImgexError
from imgex.core.paths import get_settings_path
from imgex.core.serializer import ArchiveFormat

DEFAULT_COMPRESS_LEVEL = 6


class ExportSettings(BaseModel):
    """Settings for filesystem exports.

    Attributes:
        compress: Gzip the output archive.
        compress_level: Gzip compression level (1-9).
        archive_format: Tar dialect used for headers.
        show_progress: Display a progress bar while applying layers.
    """

    model_config = ConfigDict(extra="forbid")

    compress: Annotated[
        bool,
        Field(description="Gzip the output archive"),
    ] = False
    compress_level: Annotated[
        int,
        Field(ge=1, le=9, description="Gzip compression level (1-9)"),
    ] = DEFAULT_COMPRESS_LEVEL
    archive_format: Annotated[
        ArchiveFormat,
        Field(description="Tar dialect: pax, gnu or ustar"),
    ] = "pax"
    show_progress: Annotated[
        bool,
        Field(description="Show a progress bar on stderr"),
    ] = True


class SettingsError(ImgexError):
    """Base exception for settings errors."""


class SettingsNotFoundError(SettingsError):
    """Raised when the settings file is not found."""


class SettingsParseError(SettingsError):
    """Raised when the settings file cannot be parsed."""


def load_settings(path: Path | None = None) -> ExportSettings:
    """Load export settings from a TOML file.

    Args:
        path: Path to the settings file. If None, uses the default path.

    Returns:
        Validated ExportSettings object.

    Raises:
        SettingsNotFoundError: If the settings file doesn't exist.
        SettingsParseError: If the TOML syntax is invalid.
        SettingsError: If the content doesn't match the schema.
    """
    settings_path = path or get_settings_path()

    if not settings_path.exists():
        raise SettingsNotFoundError(f"Settings not found: {settings_path}")

    try:
        with open(settings_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise SettingsParseError(f"Invalid TOML syntax: {e}") from e
    except OSError as e:
        raise SettingsError(f"Failed to read settings: {e}") from e

    try:
        return ExportSettings.model_validate(data)
    except ValidationError as e:
        raise SettingsError(f"Invalid settings content: {e}") from e


def load_settings_or_default(path: Path | None = None) -> ExportSettings:
    """Load export settings, falling back to defaults when no file exists.

    Args:
        path: Path to the settings file. If None, uses the default path.

    Returns:
        ExportSettings from the file, or defaults if the file is missing.

    Raises:
        SettingsParseError: If the TOML syntax is invalid.
        SettingsError: If the content doesn't match the schema.
    """
    try:
        return load_settings(path)
    except SettingsNotFoundError:
        return ExportSettings()


def save_settings(settings: ExportSettings, path: Path | None = None) -> Path:
    """Save export settings to a TOML file.

    The file is written atomically by first writing to a temporary file
    and then using os.replace() for atomic rename.

    Args:
        settings: The settings to save.
        path: Path to save the settings. If None, uses the default path.

    Returns:
        Path where the settings were saved.

    Raises:
        SettingsError: If the file cannot be written.
    """
    settings_path = path or get_settings_path()

    tmp_path: Path | None = None
    try:
        settings_path.parent.mkdir(parents=True, exist_ok=True)
        with NamedTemporaryFile(
            mode="wb",
            dir=settings_path.parent,
            delete=False,
            suffix=".tmp",
        ) as f:
            tmp_path = Path(f.name)
            tomli_w.dump(settings.model_dump(), f)
        os.replace(str(tmp_path), str(settings_path))
    except OSError as e:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()
        raise SettingsError(f"Failed to write settings: {e}") from e

    return settings_path

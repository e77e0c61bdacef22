"""Image configuration model.

This module defines the subset of an image's config blob that describes
how a container from the image is run. The flattening core never reads
it; it is reported by the CLI next to the exported filesystem.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ImageConfig(BaseModel):
    """Runtime configuration of a container image.

    Attributes:
        user: User (name or uid) the container process runs as; empty for root.
        entrypoint: Executable and leading arguments, if set.
        cmd: Default arguments (or command when no entrypoint is set).
        working_dir: Working directory of the container process.
        env: Environment variables in KEY=VALUE form.
        labels: Image labels.
    """

    model_config = ConfigDict(extra="ignore")

    user: str = ""
    entrypoint: list[str] | None = None
    cmd: list[str] | None = None
    working_dir: str = ""
    env: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_config_blob(cls, blob: dict[str, Any]) -> "ImageConfig":
        """Build from a parsed image config blob.

        The blob stores runtime settings under a "config" key using
        Go-style capitalized field names; missing or null fields fall back
        to the model defaults.

        Args:
            blob: Parsed JSON of the image config blob.

        Returns:
            ImageConfig instance.
        """
        section = blob.get("config") or {}
        return cls(
            user=section.get("User") or "",
            entrypoint=section.get("Entrypoint"),
            cmd=section.get("Cmd"),
            working_dir=section.get("WorkingDir") or "",
            env=section.get("Env") or [],
            labels=section.get("Labels") or {},
        )

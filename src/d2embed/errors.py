"""Error taxonomy for the d2embed pipeline."""
from __future__ import annotations

from typing import Iterable, Optional


class D2EmbedError(Exception):
    """Base error with a stable code for CLI mapping."""

    code = "E_D2EMBED"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return self.message


class ConfigurationError(D2EmbedError):
    """Raised when the pipeline cannot be constructed from its configuration."""

    code = "E_CONFIG"


class ImportValidationError(ConfigurationError):
    """Raised when global imports reference files missing from the import directory."""

    code = "E_IMPORT"

    def __init__(self, missing: Iterable[tuple[str, str]], known: Iterable[str]) -> None:
        self.missing = list(missing)
        self.known = sorted(known)
        listed = ", ".join(f'"{filename}" (theme "{theme}")' for theme, filename in self.missing)
        known_text = ", ".join(self.known) if self.known else "none"
        super().__init__(f"global imports reference unknown files: {listed}. Known files: {known_text}")


class MissingConfigurationError(D2EmbedError):
    """Raised when a block uses an import directive but no import directory is configured."""

    code = "E_IMPORT_DIR_MISSING"


class StructuralError(D2EmbedError):
    """Raised when a matched block does not hold exactly one text child."""

    code = "E_STRUCTURE"


class ValidationError(D2EmbedError):
    """Raised when block metadata cannot be resolved (no themes, or an option of the wrong type)."""

    code = "E_VALIDATION"


class RenderError(D2EmbedError):
    """Raised when the diagram engine fails or returns something other than SVG text."""

    code = "E_RENDER"


__all__ = [
    "D2EmbedError",
    "ConfigurationError",
    "ImportValidationError",
    "MissingConfigurationError",
    "StructuralError",
    "ValidationError",
    "RenderError",
]

"""Public API for d2embed."""
from .discovery import Block, Target, discover_blocks
from .engine import CompileResult, D2CliEngine, DiagramEngine, SourceBundle
from .errors import (
    ConfigurationError,
    D2EmbedError,
    ImportValidationError,
    MissingConfigurationError,
    RenderError,
    StructuralError,
    ValidationError,
)
from .imports import GlobalImport, ThemeHeaderBuilder, load_import_directory
from .metadata import Derived, Metadata, MetadataResolver, auto_cast
from .pipeline import D2Embedder, EmbedConfig, embed_diagrams

__all__ = [
    "embed_diagrams",
    "D2Embedder",
    "EmbedConfig",
    "Target",
    "Block",
    "discover_blocks",
    "GlobalImport",
    "ThemeHeaderBuilder",
    "load_import_directory",
    "Derived",
    "Metadata",
    "MetadataResolver",
    "auto_cast",
    "DiagramEngine",
    "D2CliEngine",
    "SourceBundle",
    "CompileResult",
    "D2EmbedError",
    "ConfigurationError",
    "ImportValidationError",
    "MissingConfigurationError",
    "StructuralError",
    "ValidationError",
    "RenderError",
]

"""trilium-tui - Terminal navigator for Trilium notes."""

__version__ = "0.1.0"

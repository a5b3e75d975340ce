"""Command implementations for the trilium-tui CLI."""

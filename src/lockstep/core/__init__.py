"""Core engines: constraint compilation, resolution, storage and promotion."""

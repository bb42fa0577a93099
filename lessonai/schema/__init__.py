"""Schema definitions for lesson output and persistence."""

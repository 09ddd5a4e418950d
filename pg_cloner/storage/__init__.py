"""Clone pipeline, schema export and persistence."""

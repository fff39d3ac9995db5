"""Application configuration: settings and logging preset."""

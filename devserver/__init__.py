"""Local development server."""

"""Health check and self-healing engine for a web platform."""

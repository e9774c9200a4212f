"""Process initialization: logging, service wiring and shutdown."""

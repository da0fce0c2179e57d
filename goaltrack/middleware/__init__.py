"""Flask middleware: structured logging and request timing."""

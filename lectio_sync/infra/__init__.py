"""Infrastructure: settings and logging."""

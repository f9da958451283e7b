"""Church member directory backend."""

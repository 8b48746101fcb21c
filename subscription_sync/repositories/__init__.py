"""In-memory repositories for profiles, payment sessions, and processed events."""

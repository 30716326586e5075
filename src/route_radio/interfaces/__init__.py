"""Event records and the error taxonomy shared by every component."""

"""Core infrastructure shared by every muttr component: errors, settings, logging and events."""

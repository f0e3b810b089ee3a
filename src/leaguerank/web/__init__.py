"""Web API for rankings and admin triggers."""

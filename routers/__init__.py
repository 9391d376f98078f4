"""FastAPI routers: measure, profile, video, ws."""

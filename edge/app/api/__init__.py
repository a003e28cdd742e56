"""HTTP routers for the edge application."""

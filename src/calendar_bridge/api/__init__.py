"""HTTP surface: FastAPI app factory, routers and dependencies."""

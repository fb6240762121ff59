"""
Reverse proxy service package for the TMDB API.

The proxy relays every request to one upstream origin, answering CORS
preflights and health checks locally and caching successful JSON reads:

Structure:
- app.main: FastAPI app, service wiring and the catch-all route.
- app.forwarding: the request pipeline and its request/response models.
- app.adapters: the upstream HTTP client and the Starlette adapter.
- app.caching: the in-memory response cache.
"""

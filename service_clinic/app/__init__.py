"""
Clinic API service package.

A thin HTTP API over the clinic record store, with a Redis response cache in
front of its read endpoints:
- Reads: served through the read-through cache middleware
- Writes: mutate the record store, then invalidate the affected collection

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.caching: Store client, cache middleware, and invalidation.
- app.adapters: Record store standing in for the relational database.
- app.domain: Request helpers such as pagination.
"""

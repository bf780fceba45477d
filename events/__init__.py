"""events/ -- Auth lifecycle events: types, display templates, ingestion pipeline, providers.

Layer rule: events/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, web/, or auth/.
"""

"""
ingestion — Source adapters that normalize upstream feeds into hazards.

Sub-modules:
    http_client  — retrying httpx client shared by all adapters
    base         — adapter run/upsert scaffolding
    seismic      — USGS earthquakes (GeoJSON)
    wildfire     — NIFC wildfire incidents (ArcGIS REST)
    flood        — Open-Meteo / GloFAS river discharge
    atom         — Atom bulletin parser
    tsunami      — NOAA tsunami bulletins (Atom)
"""

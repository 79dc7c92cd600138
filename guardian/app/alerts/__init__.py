"""
alerts — Proximity alerting and push notification.

Sub-modules:
    channels/   — Push delivery backends (Expo)
    generator   — Hazard → per-user Alert rows
    notifier    — Direct proximity push and family geofencing passes
    geo_fence   — Spatial matching and danger tiers
"""

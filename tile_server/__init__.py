"""
Tile Server: raster map tiles

- Loads a cartographic style once (background thread at startup)
- Serves /{z}/{x}/{y}.png rendered on demand from that style
- Status endpoints: /health, /stats
"""

"""
Tile Server Test Suite

Structure:
- unit/: projection math, style rendering, engine lifecycle/concurrency, tile service
- integration/: HTTP app end to end (FastAPI TestClient)
- fakes.py: fake rendering contexts shared by both
"""

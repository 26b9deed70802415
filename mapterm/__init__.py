"""
mapterm: terminal map preview for WMS servers.

Entry point: python -m mapterm  (or the ``mapterm`` console script)

Provides:
- Viewport math and layer-group selection (geo/)
- WMS fetch pipeline and REST metadata lookup (ingest/)
- Image decoding, overlay compositing and terminal graphics output (render/)
- Interactive preview controller, screen layout and event loop (tui/)
"""

__version__ = "0.1.0"

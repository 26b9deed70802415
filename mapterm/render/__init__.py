"""
Raster side of the preview: decode map bytes, composite overlays, and
turn the result into terminal output (Kitty / Sixel / Chafa / ASCII).
"""

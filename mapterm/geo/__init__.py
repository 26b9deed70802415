"""
Geographic state of the preview: camera/bbox math and layer-group selection.
"""

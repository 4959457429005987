"""Scripts executed inside Blender rather than the pipeline interpreter."""

"""JSON schemas bundled with tmspyramid."""

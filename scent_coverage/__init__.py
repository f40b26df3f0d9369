"""
Scent Coverage Engine

Turns rover wind measurements into scent detection polygons and keeps an
incrementally updated aggregate of the area searched.
"""

__version__ = "0.1.0"

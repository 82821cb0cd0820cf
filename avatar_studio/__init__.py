"""
Avatar Studio

Guided authoring of avatar profiles and lifecycle management of their
knowledge documents, kept consistent across concurrently open views.
"""

__version__ = "1.0.0"

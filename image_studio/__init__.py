"""image_studio: Gemini image generation behind a rotating key pool."""

__version__ = "1.0.0"

"""
Imaging Module - Remote image generation and image references.

The adapter hides latency and transient failure of the remote service.
The store turns image bytes into the opaque references kept on rooms and turns.
"""

from .adapter import ImageService, ImageServiceAdapter
from .placeholder import placeholder_image
from .storage import ImageStore, DataUrlImageStore, sniff_mime_type

__all__ = [
    "ImageService",
    "ImageServiceAdapter",
    "placeholder_image",
    "ImageStore",
    "DataUrlImageStore",
    "sniff_mime_type",
]

"""
Placeholder images for running without image service credentials.

The image embeds the prompt so players can still follow the game. Output is
deterministic for a given prompt.
"""

from xml.sax.saxutils import escape

PREVIEW_LENGTH = 50

_TEMPLATE = """<svg xmlns="http://www.w3.org/2000/svg" width="512" height="512" viewBox="0 0 512 512">
  <rect width="100%" height="100%" fill="#1a1a2e"/>
  <text x="50%" y="40%" text-anchor="middle" fill="#eee" font-family="Arial" font-size="24">Generated Image</text>
  <text x="50%" y="55%" text-anchor="middle" fill="#888" font-family="Arial" font-size="14">{prompt}</text>
  <text x="50%" y="70%" text-anchor="middle" fill="#666" font-family="Arial" font-size="12">(Mock Mode - API Key Required)</text>
</svg>
"""


def placeholder_image(prompt: str) -> bytes:
    """Render an SVG placeholder showing the start of the prompt."""
    preview = prompt[:PREVIEW_LENGTH]
    if len(prompt) > PREVIEW_LENGTH:
        preview += "..."
    return _TEMPLATE.format(prompt=escape(preview)).encode("utf-8")

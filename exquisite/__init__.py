"""
Exquisite - Collaborative Image Editing Game Engine

Players join a room and take turns describing how to change a shared image.
The engine provides:
- Rooms with join codes and turn ordering
- Prompt moderation
- Image generation through a remote service
- A turn-based game state machine
- Real-time room events
"""

__version__ = "0.1.0"

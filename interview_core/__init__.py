"""
Interview Core
==============

Real-time voice pipeline for the AI mock-interview service.

This package turns a recorded candidate answer into a spoken interviewer
reply and streams the progress to the client:
- Speech-to-text with primary/fallback providers
- Persona-conditioned reply generation (full or token-streaming)
- Text-to-speech with a two-tier synthesis cache
- Server-Sent Events surface with heartbeats and a hard deadline
- Voice analysis (pace, filler words, silences) of each answer
"""

__version__ = "1.0.0"

"""
VoiceFlow - Dictate Anywhere

Hold a global hotkey, speak, and have the transcript typed into whatever
application has focus. Transcription is done by Deepgram, either in one
request after the key is released or live while speaking.
"""

__version__ = "2.2.0"

from voiceflow.config import Config
from voiceflow.controller import RecordingController

__all__ = ["Config", "RecordingController", "__version__"]

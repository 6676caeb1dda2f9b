"""screencaster - coordinated screen, microphone and camera recording sessions."""

__version__ = "0.1.0"

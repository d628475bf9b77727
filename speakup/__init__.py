"""
SpeakUp Backend Application

A speaking-practice coach backend featuring:
- Continuous speech capture driven from the server (browser recognizer)
- Echo suppression of the coach's own synthesized voice
- LLM-powered coach replies with Azure TTS audio
- Per-utterance scored feedback
"""

__version__ = "0.3.0"
__app_name__ = "speakup"

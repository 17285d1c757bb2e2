"""
SPEC-AS-CONSTANTS
-----------------
Single source of truth for all behavioral constants in the system.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Audio Format (PCM16 mono @ 16kHz, 20ms frames)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_FRAME_MS: Final[int] = 20

AUDIO_SAMPLES_PER_FRAME: Final[int] = (AUDIO_SAMPLE_RATE_HZ * AUDIO_FRAME_MS) // 1000
AUDIO_BYTES_PER_FRAME_PCM: Final[int] = AUDIO_SAMPLES_PER_FRAME * AUDIO_SAMPLE_WIDTH_BYTES

# Frames buffered per subscriber before the oldest are dropped (~2s)
MIC_SUBSCRIBER_QUEUE_MAX_FRAMES: Final[int] = 100

# Agent audio buffered for playback before the oldest is dropped (~1s)
SPEAKER_BUFFER_MAX_BYTES: Final[int] = AUDIO_SAMPLE_RATE_HZ * AUDIO_SAMPLE_WIDTH_BYTES

# =============================================================================
# Speech capture loop
# =============================================================================

# Delay before restarting capture after the provider stops itself
SPEECH_RESTART_BACKOFF_MS: Final[int] = 100

SPEECH_LANGUAGE_DEFAULT: Final[str] = "en-US"
DEEPGRAM_MODEL_DEFAULT: Final[str] = "nova-2"
DEEPGRAM_LISTEN_URL: Final[str] = "wss://api.deepgram.com/v1/listen"
DEEPGRAM_ENDPOINTING_MS: Final[int] = 300

# =============================================================================
# Credentials
# =============================================================================

TOKEN_ENDPOINT_PATH: Final[str] = "/api/token"
TOKEN_REQUEST_TIMEOUT_S: Final[float] = 10.0

# =============================================================================
# Text messaging
# =============================================================================

TEXT_ENCODING: Final[str] = "utf-8"

# Local reply shown when a message is sent without a live session
DEMO_REPLY_DELAY_MS: Final[int] = 1000
DEMO_REPLY_TEXT: Final[str] = (
    "I received your message. Please connect to the voice service "
    "for real-time interaction."
)

# =============================================================================
# System messages (conversation log)
# =============================================================================

MSG_CONNECTED: Final[str] = "Connected to voice assistant"
MSG_DISCONNECTED: Final[str] = "Disconnected from voice assistant"
MSG_CONNECTION_FAILED: Final[str] = "Connection failed: {reason}"
MSG_CONNECTION_LOST: Final[str] = "Connection lost: {reason}"
MSG_AGENT_JOINED: Final[str] = "AI Assistant joined the conversation"
MSG_SPEECH_UNSUPPORTED: Final[str] = "Speech recognition is not supported on this host"
MSG_VOICE_ACTIVATED: Final[str] = "Voice mode activated - Start speaking"
MSG_VOICE_DEACTIVATED: Final[str] = "Voice mode deactivated"
MSG_VOICE_START_FAILED: Final[str] = "Failed to start voice recognition"
MSG_SPEECH_ERROR: Final[str] = "Voice recognition stopped: {reason}"
MSG_SEND_FAILED: Final[str] = "Failed to send message: {reason}"
MSG_UNDECODABLE_DATA: Final[str] = "Received a message that could not be decoded"
MSG_MUTE_UNAVAILABLE: Final[str] = "Microphone controls are available only while voice mode is active"
MSG_TEARDOWN_FAILED: Final[str] = "Error while disconnecting: {reason}"

# =============================================================================
# Teardown
# =============================================================================

# Upper bound on waiting for in-flight operations when a controller closes
TEARDOWN_TIMEOUT_S: Final[float] = 5.0

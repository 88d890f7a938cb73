from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

# -------------------------------------------------------------- #
# Base Server Handler
# -------------------------------------------------------------- #


class BaseServerHandler(ABC):
    """Abstract base class for all server handlers."""

    def __init__(self, name: str):
        self.name = name
        self._connected = False

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def on_startup(self) -> None:
        """Actions to perform on server startup."""
        pass

    async def on_close(self) -> None:
        """Actions to perform on server close."""
        pass

    # -------------------------------------------------------------- #
    # Abstract Methods
    # -------------------------------------------------------------- #

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the server."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the server."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the server is healthy and responding."""
        pass

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to the server."""
        return self._connected


# -------------------------------------------------------------- #
# Shared Types
# -------------------------------------------------------------- #


class TranscriptionEventType:
    OPEN = "open"
    RESULT = "result"
    METADATA = "metadata"
    WARNING = "warning"
    ERROR = "error"
    CLOSE = "close"


@dataclass
class TranscriptionEvent:
    """A single event surfaced by a live transcription connection."""

    type: str
    payload: Any = None

    def extract_transcript(self) -> str | None:
        """
        Pull the first alternative's transcript out of a result payload.

        Returns:
            The transcript text, or None if the payload is not a well formed result
        """
        if self.type != TranscriptionEventType.RESULT or not isinstance(self.payload, dict):
            return None

        channel = self.payload.get("channel")
        if not isinstance(channel, dict):
            return None

        alternatives = channel.get("alternatives")
        if not isinstance(alternatives, list) or not alternatives:
            return None

        first = alternatives[0]
        if not isinstance(first, dict):
            return None

        transcript = first.get("transcript")
        return transcript if isinstance(transcript, str) else None


@dataclass
class SynthesizedAudio:
    """Mono float samples in [-1, 1] plus the rate they were generated at."""

    samples: Any
    sample_rate: int


class TranscriptionConnectionError(Exception):
    """Raised when a live transcription connection cannot be opened."""


# -------------------------------------------------------------- #
# Live Transcription Connection
# -------------------------------------------------------------- #


class LiveTranscriptionConnection(ABC):
    """Duplex connection to a streaming transcription service for one utterance."""

    @abstractmethod
    async def open(self) -> None:
        """Open the connection. Raises TranscriptionConnectionError on failure."""
        pass

    @abstractmethod
    async def send(self, chunk: bytes) -> None:
        """Write one raw audio chunk."""
        pass

    @abstractmethod
    async def finalize(self) -> None:
        """Ask the service to flush pending results for the audio sent so far."""
        pass

    @abstractmethod
    def events(self) -> AsyncIterator[TranscriptionEvent]:
        """Iterate events until the connection closes."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass


# -------------------------------------------------------------- #
# Base Service Structures
# -------------------------------------------------------------- #


# Transcription Server Handler
class TranscriptionServerHandler(BaseServerHandler):
    """Streaming speech-to-text server handler."""

    def __init__(self, name: str, endpoint: str):
        super().__init__(name)
        self.endpoint = endpoint

    @abstractmethod
    def open_stream(self) -> LiveTranscriptionConnection:
        """
        Create a new, unopened live connection for a single utterance.

        Returns:
            Connection the caller must open and eventually close
        """
        pass


# Assistant Server Handler
class AssistantServerHandler(BaseServerHandler):
    """Chat completion server handler."""

    def __init__(self, name: str, endpoint: str):
        super().__init__(name)
        self.endpoint = endpoint

    @property
    @abstractmethod
    def has_credentials(self) -> bool:
        pass

    @abstractmethod
    async def create_chat_completion(self, payload: dict[str, Any]) -> Any:
        """
        Submit a chat completion request.

        Args:
            payload: JSON request body

        Returns:
            Decoded JSON response body
        """
        pass


# Speech Synthesis Server Handler
class SpeechSynthesisServerHandler(BaseServerHandler):
    """Text-to-speech engine handler. One shared engine per process."""

    @abstractmethod
    async def generate(self, text: str, speaker_id: int, speed: float) -> SynthesizedAudio:
        """
        Synthesize speech for the given text.

        Args:
            text: Text to speak
            speaker_id: Voice index within the model
            speed: Playback speed multiplier

        Returns:
            Mono samples and their sample rate
        """
        pass

"""Speech-to-text adapters.

- When DEMO_MODE=true (default), `DemoTranscriber` returns deterministic text
  and makes no network calls.
- When DEMO_MODE=false, `HttpTranscriber` posts the recording to an
  OpenAI-compatible `/v1/audio/transcriptions` endpoint.
"""

import hashlib
from abc import ABC, abstractmethod

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from caption_room.app_config import AppEnvironConfig
from caption_room.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

TRANSCRIPTIONS_PATH = "/v1/audio/transcriptions"


class AudioPayload(BaseModel):
    """A finished recording as received from the uploader."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(..., repr=False)
    filename: str = "audio.webm"
    content_type: str = "audio/webm"

    @property
    def size(self) -> int:
        return len(self.data)


class TranscriptionPort(ABC):
    """Audio in, text out. Implementations raise `AppError` on failure."""

    @abstractmethod
    async def transcribe(self, audio: AudioPayload) -> str: ...

    async def aclose(self) -> None:
        return None


def transcription_failed(message: str, status_code: int = HttpStatusCode.BAD_GATEWAY) -> AppError:
    return AppError(
        errcode=AppErrorCode.E_TRANSCRIPTION_FAILED,
        errmesg=message,
        status_code=status_code,
        stacklevel=2,
    )


class DemoTranscriber(TranscriptionPort):
    """Deterministic stub: the same recording always yields the same caption."""

    def __init__(self, text: str | None = None):
        self._text = text

    async def transcribe(self, audio: AudioPayload) -> str:
        if self._text is not None:
            return self._text
        digest = hashlib.sha1(audio.data).hexdigest()[:8]
        logger.debug("DemoTranscriber: {} bytes -> {}", audio.size, digest)
        return f"[demo transcript {digest}, {audio.size} bytes]"


class HttpTranscriber(TranscriptionPort):
    """Client for an OpenAI-compatible transcription endpoint.

    Example:
        ```python
        transcriber = HttpTranscriber("https://api.openai.com", api_key="sk-...")
        text = await transcriber.transcribe(AudioPayload(data=recording))
        ```
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        model: str = "whisper-1",
        language: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.language = language
        self.timeout = timeout
        self._transport = transport

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def transcribe(self, audio: AudioPayload) -> str:
        url = f"{self.base_url}{TRANSCRIPTIONS_PATH}"
        data = {"model": self.model, "response_format": "json"}
        if self.language:
            data["language"] = self.language
        files = {"file": (audio.filename, audio.data, audio.content_type)}

        logger.debug("Transcribing {} bytes via {}", audio.size, url)
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(url, data=data, files=files, headers=self._build_headers())
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Transcriber returned {}: {}",
                exc.response.status_code,
                exc.response.text[:200],
            )
            raise transcription_failed(
                f"Transcriber returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.TimeoutException as exc:
            raise transcription_failed(
                "Transcriber timed out", HttpStatusCode.GATEWAY_TIMEOUT
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Transcriber request failed: {}", exc)
            raise transcription_failed(f"Transcriber unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise transcription_failed("Transcriber response is not valid JSON") from exc

        text = body.get("text") if isinstance(body, dict) else None
        if not isinstance(text, str):
            raise transcription_failed("Transcriber response has no text field")
        return text.strip()


def create_transcriber(cfg: AppEnvironConfig) -> TranscriptionPort:
    """Pick the transcriber for the current environment.

    Raises:
        AppError: If DEMO_MODE=false but TRANSCRIBER_URL is missing
    """
    if cfg.DEMO_MODE:
        logger.info("Transcriber initialized in DEMO_MODE (stubbed)")
        return DemoTranscriber()

    if not cfg.TRANSCRIBER_URL:
        logger.error("TRANSCRIBER_URL not configured (DEMO_MODE=false)")
        raise AppError(
            errcode=AppErrorCode.E_INVALID_PARAMS,
            errmesg="TRANSCRIBER_URL must be configured when DEMO_MODE=false.",
            status_code=HttpStatusCode.INTERNAL_SERVER_ERROR,
        )

    logger.info("Transcriber initialized: {} model={}", cfg.TRANSCRIBER_URL, cfg.TRANSCRIBER_MODEL)
    return HttpTranscriber(
        cfg.TRANSCRIBER_URL,
        cfg.TRANSCRIBER_API_KEY,
        model=cfg.TRANSCRIBER_MODEL,
        language=cfg.TRANSCRIBER_LANGUAGE,
        timeout=cfg.TRANSCRIPTION_TIMEOUT_SECONDS,
    )

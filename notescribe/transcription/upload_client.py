"""HTTP client that posts PCM16 chunks to the transcription endpoint."""

import asyncio
import logging
import threading
from typing import Callable, Optional, Tuple

import aiohttp
from pydantic import ValidationError

from ..exceptions import MalformedResponseError, UploadAuthError, UploadChunkError
from ..models.session import SessionMeta
from ..models.transcription import ChunkResult, TranscriptionResponse

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]

AUTH_FAILURE_STATUSES = (401, 403)


class UploadClient:
    """Posts one chunk at a time and carries the server-issued session id forward."""

    def __init__(
        self,
        endpoint_url: str,
        token_provider: Optional[TokenProvider] = None,
        timeout_seconds: float = 30.0,
        require_token: bool = False,
    ):
        """Initialize upload client.

        Args:
            endpoint_url: Transcription endpoint URL
            token_provider: Returns the current bearer token, or None when signed out
            timeout_seconds: Total timeout for one request
            require_token: Fail locally instead of sending an unauthenticated request
        """
        if not endpoint_url:
            raise ValueError("Transcription endpoint URL is required")
        self.endpoint_url = endpoint_url
        self.token_provider = token_provider
        self.timeout_seconds = timeout_seconds
        self.require_token = require_token

        self._session_id: Optional[str] = None
        # Bumped by reset_session(); responses to requests sent before a reset are not adopted
        self._session_epoch = 0
        self._session_lock = threading.Lock()

        logger.info(f"UploadClient initialized for endpoint: {endpoint_url}")

    @property
    def session_id(self) -> Optional[str]:
        with self._session_lock:
            return self._session_id

    def reset_session(self) -> None:
        """Forget the server session so the next chunk starts a new one."""
        with self._session_lock:
            self._session_id = None
            self._session_epoch += 1

    def session_snapshot(self) -> Tuple[Optional[str], int]:
        """Current session id together with the reset epoch it belongs to."""
        with self._session_lock:
            return self._session_id, self._session_epoch

    def remember_session(self, session_id: Optional[str], epoch: int) -> bool:
        """Adopt a server-issued session id unless reset_session() ran since epoch.

        Returns:
            True if the id was stored
        """
        if not session_id:
            return False
        with self._session_lock:
            if epoch != self._session_epoch:
                logger.info(f"Ignoring session id {session_id} from a request sent before the last reset")
                return False
            if self._session_id != session_id:
                logger.info(f"Transcription session id: {session_id}")
            self._session_id = session_id
            return True

    def _get_token(self) -> Optional[str]:
        if not self.token_provider:
            return None
        try:
            return self.token_provider()
        except Exception as e:
            logger.warning(f"Token provider failed: {e}")
            return None

    def _build_form(self, pcm_bytes: bytes, meta: SessionMeta, session_id: Optional[str]) -> aiohttp.FormData:
        form = aiohttp.FormData()
        form.add_field("audio", pcm_bytes, filename="audio.pcm", content_type="application/octet-stream")
        form.add_field("mode", meta.mode.value)
        if meta.device_label:
            form.add_field("deviceLabel", meta.device_label)
        if session_id:
            form.add_field("sessionId", session_id)
        return form

    async def post_chunk(self, pcm_bytes: bytes, meta: SessionMeta) -> ChunkResult:
        """Upload one PCM16 chunk and interpret the response.

        Args:
            pcm_bytes: Little-endian PCM16 mono audio
            meta: Capture mode and device label for this recording

        Returns:
            ChunkResult; empty when the server found nothing to transcribe

        Raises:
            UploadAuthError: 401/403, or no token while require_token is set
            UploadChunkError: any other failure status, server error body, or network failure
            MalformedResponseError: 2xx body that is not a valid response document
        """
        token = self._get_token()
        if not token and self.require_token:
            raise UploadAuthError("No credential available, sign in again")

        session_id, epoch = self.session_snapshot()
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        form = self._build_form(pcm_bytes, meta, session_id)
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        logger.debug(f"Posting chunk: {len(pcm_bytes)} bytes, mode={meta.mode.value}, "
                     f"sessionId={session_id or '<new>'}")
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.endpoint_url, data=form, headers=headers) as response:
                    status = response.status
                    body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UploadChunkError(f"Network error posting chunk: {e!r}") from e

        return self._interpret(status, body, epoch)

    def post_chunk_sync(self, pcm_bytes: bytes, meta: SessionMeta) -> ChunkResult:
        """Blocking wrapper around post_chunk for callers without an event loop.

        Must not be called from a thread that is already running an event loop.
        """
        return asyncio.run(self.post_chunk(pcm_bytes, meta))

    @staticmethod
    def _error_text(body: str) -> str:
        try:
            parsed = TranscriptionResponse.model_validate_json(body)
        except ValidationError:
            return body.strip()[:200]
        return parsed.error or body.strip()[:200]

    def _interpret(self, status: int, body: str, epoch: int) -> ChunkResult:
        if status in AUTH_FAILURE_STATUSES:
            raise UploadAuthError(f"Session expired ({status}): {self._error_text(body)}", status)
        if not 200 <= status < 300:
            raise UploadChunkError(f"Transcription failed: {status} {self._error_text(body)}", status)

        try:
            parsed = TranscriptionResponse.model_validate_json(body)
        except ValidationError as e:
            raise MalformedResponseError(f"Unparseable transcription response: {e}", status) from e

        segments = parsed.speaker_segments or []
        if parsed.error and not segments and parsed.transcript is None:
            raise UploadChunkError(f"Transcription failed: {parsed.error}", status)

        self.remember_session(parsed.session_id, epoch)

        result = ChunkResult(
            session_id=parsed.session_id or self.session_id,
            transcript=parsed.transcript,
            speaker_segments=segments,
        )
        if result.is_empty:
            logger.debug("Chunk response carried no transcript (silence)")
        else:
            logger.debug(f"Chunk transcribed: {len(segments)} segment(s), "
                         f"transcript={(parsed.transcript or '')[:50]!r}")
        return result

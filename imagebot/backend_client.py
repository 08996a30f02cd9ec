import logging
from asyncio import sleep
from typing import Any, Optional, Protocol

import httpx

from .errors import (
    BackendReportedError,
    DecodeError,
    MissingOutput,
    PollTimeout,
    TransportError,
    UnknownStatus,
)
from .model import GenerationRequest, ImageResult, PredictionResponse
from .payload_builder import build_prediction_input, build_text_to_image_form

logger = logging.getLogger(__name__)

# Error bodies can be whole HTML pages
MAX_DETAIL_LENGTH = 300


def _error_detail(r: httpx.Response) -> str:
    """Replicate puts the reason in {"detail": ...}; fall back to the raw body."""
    try:
        body = r.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])[:MAX_DETAIL_LENGTH]
    return r.text[:MAX_DETAIL_LENGTH]


class ImageBackend(Protocol):
    async def submit(self, request: GenerationRequest) -> ImageResult: ...

    async def aclose(self) -> None: ...


class ReplicateBackend:
    """
    Submit-and-poll backend: POST /predictions creates a job,
    GET /predictions/{id} is polled until the status is terminal.
    """

    def __init__(
        self,
        token: str,
        version: str,
        base_url: str = "https://api.replicate.com/v1",
        poll_interval: float = 0.5,
        max_poll_attempts: int = 600,
        timeout: float = 300,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.version = version
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Token {token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> PredictionResponse:
        try:
            r = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"Request to the backend failed: {e}") from e

        if r.status_code >= 400:
            logger.error("[ReplicateBackend] %s %s returned %s: %s", method, url, r.status_code, r.text[:500])
            raise TransportError(f"Backend returned HTTP {r.status_code}: {_error_detail(r)}")

        try:
            return PredictionResponse.model_validate(r.json())
        except ValueError as e:
            raise DecodeError(f"Could not decode backend response: {e}") from e

    async def create_prediction(self, request: GenerationRequest) -> PredictionResponse:
        payload = {"version": self.version, "input": build_prediction_input(request)}
        return await self._request("POST", "/predictions", json=payload)

    async def get_prediction(self, prediction_id: str) -> PredictionResponse:
        return await self._request("GET", f"/predictions/{prediction_id}")

    async def wait_for_prediction(self, prediction: PredictionResponse) -> PredictionResponse:
        """
        Poll until the job leaves starting/processing.
        Polls are strictly sequential, one poll_interval apart.
        """
        polls = 0
        while not prediction.is_terminal:
            if polls >= self.max_poll_attempts:
                raise PollTimeout(prediction.id, polls)
            await sleep(self.poll_interval)
            prediction = await self.get_prediction(prediction.id)
            polls += 1
            logger.debug("[ReplicateBackend] Polled %s, status=%s", prediction.id, prediction.status)
        return prediction

    async def submit(self, request: GenerationRequest) -> ImageResult:
        prediction = await self.create_prediction(request)
        logger.info("[ReplicateBackend] Got prediction id: %s (status=%s)", prediction.id, prediction.status)

        prediction = await self.wait_for_prediction(prediction)

        # An explicit error wins over any output that came with it
        if prediction.error:
            raise BackendReportedError(prediction.error)
        if not prediction.output:
            raise MissingOutput()

        return ImageResult(urls=prediction.output)

    async def aclose(self) -> None:
        await self.client.aclose()


class StabilityBackend:
    """
    Synchronous multipart backend: one POST, the image bytes come back in the body.
    """

    def __init__(
        self,
        api_key: str,
        engine: str = "sd3",
        base_url: str = "https://api.stability.ai/v2beta",
        model: Optional[str] = None,
        timeout: float = 300,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.engine = engine
        self.model = model
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "image/*",
            },
            timeout=timeout,
            transport=transport,
        )

    async def submit(self, request: GenerationRequest) -> ImageResult:
        form = build_text_to_image_form(request, self.model)
        # (None, value) parts force multipart/form-data without filenames
        files = {name: (None, value) for name, value in form.items()}

        try:
            r = await self.client.post(f"/stable-image/generate/{self.engine}", files=files)
        except httpx.HTTPError as e:
            raise TransportError(f"Request to the backend failed: {e}") from e

        if r.status_code == 200:
            return ImageResult(content=r.content, content_type=r.headers.get("content-type"))

        if 400 <= r.status_code <= 599:
            logger.error("[StabilityBackend] HTTP %s: %s", r.status_code, r.text[:500])
            raise BackendReportedError(r.text[:MAX_DETAIL_LENGTH])

        raise UnknownStatus(r.status_code)

    async def aclose(self) -> None:
        await self.client.aclose()


def build_backend(settings: Any) -> ImageBackend:
    """Pick the backend named by settings.IMAGE_BACKEND."""
    name = settings.IMAGE_BACKEND.lower()

    if name == "replicate":
        return ReplicateBackend(
            token=settings.require("REPLICATE_TOKEN"),
            version=settings.STABLE_DIFFUSION_VERSION,
            base_url=settings.REPLICATE_API_URL,
            poll_interval=settings.POLL_INTERVAL,
            max_poll_attempts=settings.MAX_POLL_ATTEMPTS,
            timeout=settings.REQUEST_TIMEOUT,
        )

    if name == "stability":
        return StabilityBackend(
            api_key=settings.require("STABILITY_API_KEY"),
            engine=settings.STABILITY_ENGINE,
            base_url=settings.STABILITY_API_URL,
            model=settings.STABILITY_MODEL,
            timeout=settings.REQUEST_TIMEOUT,
        )

    raise ValueError(f"Unknown image backend: {settings.IMAGE_BACKEND}")

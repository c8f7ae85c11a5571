# app/services/detection.py

import base64
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import requests

from app.config import settings

logger = logging.getLogger(__name__)

AI_THRESHOLD = 0.5
FALLBACK_SCORE = 0.5


@dataclass
class ImageInput:
    url: Optional[str] = None
    content: Optional[bytes] = None
    content_type: Optional[str] = None

    def as_transport(self) -> str:
        """URL the inference API can fetch, or the bytes inlined as a data URI."""
        if self.url:
            return self.url
        if self.content is None:
            raise ValueError("Image has neither a URL nor content")
        encoded = base64.b64encode(self.content).decode("ascii")
        return f"data:{self.content_type or 'application/octet-stream'};base64,{encoded}"


class Detector(Protocol):
    def detect(self, image: ImageInput) -> float:
        ...


def is_ai_score(score: float) -> bool:
    return score > AI_THRESHOLD


def _clamp(score: float) -> float:
    return min(1.0, max(0.0, score))


class StubDetector:
    """Fixed score, no network. Used for local runs and tests."""

    def __init__(self, score: float = FALLBACK_SCORE):
        self.score = _clamp(score)

    def detect(self, image: ImageInput) -> float:
        return self.score


class ReplicateDetector:
    """Scores images with a model hosted on Replicate.

    Never raises: a scan must complete even when inference is down, so every
    failure is logged and answered with ``FALLBACK_SCORE``.
    """

    def __init__(
        self,
        api_token: Optional[str] = None,
        model_version: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_token = settings.replicate_api_token if api_token is None else api_token
        self.model_version = settings.replicate_model_version if model_version is None else model_version
        self.api_url = settings.replicate_api_url if api_url is None else api_url
        self.timeout = settings.replicate_timeout_seconds if timeout is None else timeout
        self.session = requests.Session() if session is None else session

    def _request(self, image: ImageInput) -> dict:
        response = self.session.post(
            self.api_url,
            headers={
                "Authorization": f"Bearer {self.api_token}",
                "Content-Type": "application/json",
                "Prefer": "wait",
            },
            json={"version": self.model_version, "input": {"image": image.as_transport()}},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _extract_score(prediction: Any) -> float:
        if not isinstance(prediction, dict):
            raise ValueError(f"prediction is not an object: {prediction!r}")
        if prediction.get("status") not in (None, "succeeded"):
            raise ValueError(f"prediction status {prediction.get('status')}: {prediction.get('error')}")
        output = prediction.get("output")
        if isinstance(output, dict):
            output = output.get("score")
        if isinstance(output, bool) or not isinstance(output, (int, float)):
            raise ValueError(f"no numeric score in output: {output!r}")
        return _clamp(float(output))

    def detect(self, image: ImageInput) -> float:
        if not self.api_token:
            logger.warning("Replicate token not configured; using fallback score")
            return FALLBACK_SCORE
        try:
            return self._extract_score(self._request(image))
        except (requests.RequestException, ValueError) as e:
            logger.error("Detection failed, using fallback score: %s", e)
            return FALLBACK_SCORE


def get_detector() -> Detector:
    if settings.detector_backend == "stub":
        return StubDetector()
    return ReplicateDetector()

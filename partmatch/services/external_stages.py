"""
External Matching Stage Client

HTTP client for the remote AI and web-search matching services.
Uses httpx for async requests; every call goes through a RateLimitedExecutor
so rate limiting and backoff stay out of the core matchers.
"""

from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

from partmatch.config import stage_settings
from partmatch.errors import ExternalStageError, RetryableStageError
from partmatch.models import MatchCandidate, MatchMethod, StageName, StoreItem, SupplierItem
from partmatch.services.rate_limiter import RETRYABLE_STATUS_CODES, RateLimitedExecutor

logger = structlog.get_logger(__name__)

STAGE_METHODS = {
    StageName.AI: MatchMethod.AI,
    StageName.WEB_SEARCH: MatchMethod.WEB_SEARCH,
}


class StageMatch(BaseModel):
    """Match proposed by the remote service."""

    supplier_item_id: Optional[str] = None
    external_ref: Optional[str] = None
    confidence: float = Field(..., ge=0, le=1)
    evidence: Dict[str, Any] = Field(default_factory=dict)


class StageMatchResponse(BaseModel):
    """Response body of POST /match."""

    match: Optional[StageMatch] = None


def _record(item) -> dict:
    return {
        "id": item.id,
        "part_number": item.part_number,
        "canonical_part_number": item.canonical_part_number,
        "line_code": item.line_code,
        "mfr_code": item.mfr_code,
        "description": item.description,
    }


class HttpMatchingStage:
    """
    Async client for one remote matching stage.

    Usage:
        async with HttpMatchingStage(StageName.AI) as stage:
            candidate = await stage.match(store_item, candidate_pool)
    """

    def __init__(
        self,
        name: StageName,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        executor: Optional[RateLimitedExecutor] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the stage client.

        Args:
            name: AI or WEB_SEARCH
            base_url: Service URL (defaults to STAGE_BASE_URL)
            timeout: Read timeout in seconds (defaults to STAGE_TIMEOUT)
            executor: Shared rate-limited executor
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        if name not in STAGE_METHODS:
            raise ValueError(f"{name} is not an external stage")
        self.name = name
        self.method = STAGE_METHODS[name]
        self.base_url = (base_url or stage_settings.base_url).rstrip("/")
        self.timeout = httpx.Timeout(
            connect=5.0,
            read=timeout or stage_settings.timeout,
            write=5.0,
            pool=5.0,
        )
        self.executor = executor or RateLimitedExecutor()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._log = logger.bind(stage=name.value, base_url=self.base_url)

    async def __aenter__(self) -> "HttpMatchingStage":
        """Context manager entry - create async client."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Content-Type": "application/json",
                "User-Agent": "partmatch/0.1",
            },
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - close async client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise ExternalStageError(
                "HttpMatchingStage not initialized. Use 'async with HttpMatchingStage(...) as stage:'"
            )
        return self._client

    async def _post(self, payload: dict) -> StageMatchResponse:
        try:
            response = await self.client.post("/match", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in RETRYABLE_STATUS_CODES:
                raise RetryableStageError(f"{self.name.value} stage returned {status}") from e
            raise ExternalStageError(f"{self.name.value} stage returned {status}: {e.response.text[:200]}") from e
        except httpx.TransportError as e:
            raise RetryableStageError(f"{self.name.value} stage unreachable: {e}") from e

        try:
            return StageMatchResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ExternalStageError(f"{self.name.value} stage returned a malformed response: {e}") from e

    async def match(
        self,
        store_item: StoreItem,
        candidate_pool: Sequence[SupplierItem],
    ) -> Optional[MatchCandidate]:
        """
        Ask the remote service for a match.

        Returns:
            MatchCandidate, or None when the service found nothing

        Raises:
            ExternalStageError: Non-retryable failure or retries exhausted
        """
        payload = {
            "stage": self.name.value,
            "store_item": _record(store_item),
            "candidates": [_record(s) for s in candidate_pool],
        }
        body = await self.executor.execute(self._post, payload)
        if body.match is None:
            self._log.debug("external_stage_no_match", item_id=store_item.id)
            return None

        pool_ids = {s.id for s in candidate_pool}
        target_id = body.match.supplier_item_id
        if target_id is not None and pool_ids and target_id not in pool_ids:
            raise ExternalStageError(
                f"{self.name.value} stage proposed supplier item {target_id} outside the candidate pool"
            )
        if target_id is None and not body.match.external_ref:
            raise ExternalStageError(f"{self.name.value} stage returned a match without a target")

        evidence = dict(body.match.evidence)
        evidence["pool_size"] = len(candidate_pool)
        return MatchCandidate(
            project_id=store_item.project_id,
            store_item_id=store_item.id,
            target_id=target_id,
            external_ref=body.match.external_ref if target_id is None else None,
            method=self.method,
            confidence=body.match.confidence,
            evidence=evidence,
        )


def create_external_stages(stages: Sequence[StageName]) -> List[HttpMatchingStage]:
    """Build HTTP clients for the requested external stages that are enabled."""
    enabled = {
        StageName.AI: stage_settings.ai_enabled,
        StageName.WEB_SEARCH: stage_settings.web_search_enabled,
    }
    executor = RateLimitedExecutor()
    return [
        HttpMatchingStage(stage, executor=executor)
        for stage in stages
        if stage in STAGE_METHODS and enabled[stage]
    ]

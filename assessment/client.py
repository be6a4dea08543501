"""Clients for the external statistical assessment service."""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol

import httpx

from ..config import SUITE_MIN_BITS
from ..errors import invalid_input, service_unavailable
from ..jobs.models import AssessmentResult, TestOutcome, ValidationType

logger = logging.getLogger(__name__)

ENDPOINTS: Dict[ValidationType, str] = {
    ValidationType.STATISTICAL_SUITE: "/v1/statistical-suite",
    ValidationType.ENTROPY_ASSESSMENT: "/v1/entropy-assessment",
}

# Status codes with which the service rejects the submitted bitstream itself.
_INPUT_REJECTIONS = frozenset({400, 413, 422})


class AssessmentClient(Protocol):
    """Evaluates one bitstream chunk remotely."""

    async def evaluate(self, bitstream: bytes, kind: ValidationType) -> AssessmentResult:
        ...


def _estimate(value: Any) -> Optional[float]:
    """The service reports negative estimates for tests that produce none."""
    if value is None:
        return None
    value = float(value)
    return None if value < 0 else value


def parse_result(payload: Mapping[str, Any]) -> AssessmentResult:
    """Build an ``AssessmentResult`` from the service's JSON body."""
    tests = []
    for item in payload.get("tests") or []:
        tests.append(TestOutcome(
            name=str(item["name"]),
            passed=bool(item["passed"]),
            p_value=item.get("p_value"),
            entropy_estimate=_estimate(item.get("entropy_estimate")),
            details=item.get("details"),
        ))
    estimates = payload.get("entropy_estimates")
    if estimates is not None:
        estimates = {str(k): _estimate(v) for k, v in estimates.items()}
    return AssessmentResult(tests=tests, entropy_estimates=estimates)


class HttpAssessmentClient:
    """Async HTTP client for the assessment service.

    Parameters
    ----------
    base_url : str
        Service root, e.g. ``http://assessment:9090``.
    token : str, optional
        Sent as a bearer token when given.
    timeout : float
        Read timeout in seconds for one evaluation call.
    connect_timeout : float
        Connection timeout in seconds.
    min_bits : mapping, optional
        Smallest bitstream accepted per validation type; smaller inputs are
        rejected locally with INVALID_INPUT.
    transport : httpx.AsyncBaseTransport, optional
        Injected transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 600.0,
        connect_timeout: float = 10.0,
        min_bits: Optional[Mapping[ValidationType, int]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.min_bits = dict(
            min_bits if min_bits is not None else {ValidationType.STATISTICAL_SUITE: SUITE_MIN_BITS}
        )
        headers = {"Content-Type": "application/octet-stream"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def evaluate(self, bitstream: bytes, kind: ValidationType) -> AssessmentResult:
        """POST *bitstream* to the endpoint for *kind* and parse the result set.

        Raises
        ------
        EngineError
            INVALID_INPUT when the bitstream is too small or the service
            rejects it; SERVICE_UNAVAILABLE when the service cannot be
            reached or fails.
        """
        bits = len(bitstream) * 8
        required = self.min_bits.get(kind, 0)
        if bits < required:
            raise invalid_input(
                f"Bitstream of {bits} bits is below the {required} bits required for {kind.value}"
            )

        try:
            response = await self._client.post(ENDPOINTS[kind], content=bitstream)
        except httpx.TimeoutException as e:
            raise service_unavailable(f"Assessment service timed out: {e}") from e
        except httpx.TransportError as e:
            raise service_unavailable(f"Assessment service unreachable: {e}") from e

        if response.status_code in _INPUT_REJECTIONS:
            raise invalid_input(
                f"Assessment service rejected input ({response.status_code}): {response.text}"
            )
        if response.status_code >= 400:
            raise service_unavailable(
                f"Assessment service error ({response.status_code}): {response.text}"
            )

        try:
            result = parse_result(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise service_unavailable(f"Malformed assessment response: {e}") from e
        logger.debug(
            "%s evaluated %d bits: %d tests", kind.value, bits, len(result.tests),
        )
        return result

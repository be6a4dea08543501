"""Adapters for the external statistical assessment service."""
from .client import ENDPOINTS, AssessmentClient, HttpAssessmentClient, parse_result

__all__ = ["ENDPOINTS", "AssessmentClient", "HttpAssessmentClient", "parse_result"]

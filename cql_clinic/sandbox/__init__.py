"""
Sandbox: client for the remote CQL execution service.

The service owns evaluation; this package only submits code, parses the
result list and scores it against a reference answer.
"""
from cql_clinic.sandbox.client import (
    CQLExecutionRequest,
    CQLResult,
    CQLSandboxClient,
    SandboxError,
    SubmissionScore,
    score_against_reference,
)

__all__ = [
    "CQLSandboxClient",
    "CQLExecutionRequest",
    "CQLResult",
    "SubmissionScore",
    "SandboxError",
    "score_against_reference",
]

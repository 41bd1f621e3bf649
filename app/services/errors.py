class LinkingError(Exception):
    """Base error for the transcript linking pipeline."""


class ConfigurationError(LinkingError):
    """Operator setup problem (missing credential). Not retryable, never written to the ledger."""


class TranscriptNotFoundError(LinkingError):
    def __init__(self, transcript_id: str):
        self.transcript_id = transcript_id
        super().__init__(f"Transcript not found: {transcript_id}")


class ClientNotFoundError(LinkingError):
    def __init__(self, client_id: str):
        self.client_id = client_id
        super().__init__(f"Client not found: {client_id}")


class ConcurrentResolutionError(LinkingError):
    """Another attempt updated the transcript between our read and our write."""

    def __init__(self, transcript_id: str, expected_version: int):
        self.transcript_id = transcript_id
        self.expected_version = expected_version
        super().__init__(f"Transcript {transcript_id} changed concurrently (expected version {expected_version})")


class VerdictParseError(LinkingError):
    """Model reply could not be read as a JSON object."""


class LLMRequestError(LinkingError):
    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"LLM API error: {status_code} - {body[:200]}")


class FirefliesAPIError(LinkingError):
    """Fireflies GraphQL request failed."""

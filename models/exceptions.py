"""Provider Exception Hierarchy

Classifies failures of the language-model fallback used by the classifier:
- ProviderUnavailableError: infrastructure failures (hybrid fallback allowed)
- ValueError: malformed or schema-invalid model output (never falls back)
"""


class ProviderUnavailableError(RuntimeError):
    """Raised when a provider cannot be reached.

    THROW when:
    - Connection refused or host unreachable
    - API key missing
    - Service unavailable (5xx)
    - Request timeout

    DO NOT throw for:
    - Unparseable JSON (raise ValueError)
    - Schema validation failure (raise ValueError)
    """

    def __init__(self, provider: str, message: str):
        super().__init__(message)
        self.provider = provider

    def __str__(self):
        return f"[{self.provider}] {super().__str__()}"

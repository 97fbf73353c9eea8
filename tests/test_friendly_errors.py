import pytest

from core.exceptions import CollaboratorTimeout, ConfigurationError
from core.friendly_errors import friendly_error


@pytest.mark.parametrize("error, category", [
    (RuntimeError("Rate limit exceeded for planning"), "rate_limited"),
    (RuntimeError("request timed out"), "timed_out"),
    (RuntimeError("Timeout while waiting"), "timed_out"),
    (RuntimeError("Network error calling review"), "network"),
    (RuntimeError("failed to fetch"), "network"),
    (ConfigurationError("No model API key configured"), "auth"),
    (RuntimeError("401 Unauthorized"), "auth"),
    (RuntimeError("maximum context length exceeded"), "too_complex"),
    (RuntimeError("too many tokens"), "too_complex"),
    (KeyError("x"), "generic"),
])
def test_categories(error, category):
    assert friendly_error(error).category == category


def test_collaborator_timeout_is_a_timeout_whatever_the_message():
    result = friendly_error(CollaboratorTimeout("planner gave up", role="planning"), context="generate")
    assert result.category == "timed_out"
    assert result.message == "Request took too long"
    assert result.context == "generate"


def test_first_matching_pattern_wins():
    assert friendly_error("rate limit hit after connection reset").category == "rate_limited"


def test_generic_keeps_technical_detail():
    result = friendly_error(ValueError("weird"))
    assert result.message == "Something unexpected happened"
    assert result.technical == "weird"
    assert friendly_error(ValueError()).technical == "ValueError"
    assert set(result.to_dict()) == {"category", "message", "suggestion", "technical", "context"}

import pytest

from storyteller.core.config import Settings
from storyteller.core.exceptions import ConfigurationError
from storyteller.lifecycle.retry import RetryPolicy


def test_fixed_policy_waits_between_attempts_only():
    policy = RetryPolicy(max_attempts=4, delay=2.5)

    assert list(policy.delays()) == [2.5, 2.5, 2.5]
    assert policy.worst_case_wait == 7.5


def test_single_attempt_never_waits():
    assert list(RetryPolicy(max_attempts=1, delay=5).delays()) == []


def test_exponential_policy_is_capped():
    policy = RetryPolicy(max_attempts=6, delay=1, strategy="exponential", multiplier=2, max_delay=5)

    assert list(policy.delays()) == [1, 2, 4, 5, 5]


@pytest.mark.parametrize("kwargs", [
    {"max_attempts": 0},
    {"delay": -1},
    {"strategy": "linear"},
    {"multiplier": 0.5},
])
def test_invalid_policy_rejected(kwargs):
    with pytest.raises(ConfigurationError):
        RetryPolicy(**kwargs)


def test_attempt_numbers_start_at_one():
    with pytest.raises(ValueError):
        RetryPolicy().delay_for(0)


def test_from_settings():
    settings = Settings(
        _env_file=None,
        DB_MAX_RETRIES=3,
        DB_RETRY_DELAY=0.1,
        DB_RETRY_STRATEGY="exponential",
        DB_RETRY_MULTIPLIER=3,
        DB_RETRY_MAX_DELAY=1,
    )

    policy = RetryPolicy.from_settings(settings)

    assert policy.max_attempts == 3
    assert policy.strategy == "exponential"
    assert policy.delay_for(2) == pytest.approx(0.3)

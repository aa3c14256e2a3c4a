import re

import pytest

from chirpy.service import refresh_tokens
from chirpy.service.refresh_tokens import EntropyError, generate_refresh_token

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


def test_token_is_64_lowercase_hex():
    assert _HEX64.match(generate_refresh_token())


def test_no_collisions_across_many_samples():
    samples = [generate_refresh_token() for _ in range(10_000)]

    assert len(set(samples)) == len(samples)
    assert all(_HEX64.match(token) for token in samples)


def test_unavailable_random_source_raises_entropy_error(monkeypatch):
    def broken(nbytes):
        raise OSError("getrandom failed")

    monkeypatch.setattr(refresh_tokens.secrets, "token_hex", broken)

    with pytest.raises(EntropyError):
        generate_refresh_token()

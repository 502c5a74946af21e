from __future__ import annotations

import pytest
from helpers import generate_ec_key, generate_rsa_key


@pytest.fixture(scope="session")
def rsa_key():
    return generate_rsa_key()


@pytest.fixture(scope="session")
def other_rsa_key():
    return generate_rsa_key()


@pytest.fixture(scope="session")
def ec_key():
    return generate_ec_key()

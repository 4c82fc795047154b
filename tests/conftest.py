import os

import pytest

# Keep test runs from creating chronos.log in the working directory.
os.environ.setdefault("LOG_FILE", "")

from chronos.logger import StructuredLogger  # noqa: E402
from fakes import FakeIdentityProvider  # noqa: E402


@pytest.fixture
def idp():
    return FakeIdentityProvider()


@pytest.fixture
def logger():
    return StructuredLogger(name="chronos.tests", log_file="")

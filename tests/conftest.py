# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across test modules."""

from collections.abc import AsyncIterator, Iterator

import httpx
import pytest
import pytest_asyncio

from s3lite.bucket import Bucket
from s3lite.credentials import Credentials
from s3lite.logging import SecretFilter
from s3lite.region import Region
from tests.fake_s3 import FakeS3
from tests.vectors import (
    TEST_ACCESS_KEY_ID,
    TEST_SECRET_ACCESS_KEY,
    TEST_TIME,
)


FAKE_HOST = "s3.test"
FAKE_ENDPOINT = f"http://{FAKE_HOST}"


@pytest.fixture(autouse=True)
def _clear_secrets() -> Iterator[None]:
    """Registered secrets are process-wide; isolate them per test."""
    SecretFilter.clear_secrets()
    yield
    SecretFilter.clear_secrets()


@pytest.fixture
def credentials() -> Credentials:
    """Credentials accepted by the fake server."""
    return Credentials(TEST_ACCESS_KEY_ID, TEST_SECRET_ACCESS_KEY)


@pytest.fixture
def region() -> Region:
    """Custom region pointing at the fake server."""
    return Region.custom("us-east-1", FAKE_ENDPOINT)


@pytest.fixture
def fake_s3() -> FakeS3:
    """In-memory S3 server with one empty bucket."""
    server = FakeS3(
        FAKE_HOST,
        {TEST_ACCESS_KEY_ID: TEST_SECRET_ACCESS_KEY},
        clock=lambda: TEST_TIME,
    )
    server.buckets["photos"] = {}
    return server


@pytest_asyncio.fixture
async def http_client(fake_s3: FakeS3) -> AsyncIterator[httpx.AsyncClient]:
    """HTTP client wired to the fake server."""
    async with httpx.AsyncClient(transport=fake_s3) as client:
        yield client


@pytest.fixture
def bucket(
    region: Region,
    credentials: Credentials,
    http_client: httpx.AsyncClient,
) -> Bucket:
    """Bucket ``photos`` on the fake server, signing at a fixed time."""
    return Bucket(
        "photos",
        region,
        credentials,
        client=http_client,
        clock=lambda: TEST_TIME,
    )

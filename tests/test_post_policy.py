# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for presigned POST policies."""

import base64
import json

import pytest

from s3lite.bucket import Bucket
from s3lite.credentials import Credentials
from s3lite.errors import ConfigError
from s3lite.post_policy import PostPolicy
from s3lite.region import Region
from s3lite.signing import (
    SigningAlgorithm,
    derive_sigv4_signing_key,
    sigv4_sign,
)
from tests.vectors import (
    TEST_ACCESS_KEY_ID,
    TEST_SECRET_ACCESS_KEY,
    TEST_SESSION_TOKEN,
    TEST_TIME,
)


def _decode(policy: str) -> dict:
    return json.loads(base64.b64decode(policy))


class TestPresignPost:
    """Signing a POST policy through a bucket."""

    def test_fields_and_signature(self, bucket: Bucket) -> None:
        policy = (
            PostPolicy(3600)
            .add_equals_condition("$key", "uploads/a.png")
            .add_equals_condition("Content-Type", "image/png")
            .add_content_length_range_condition(1, 1024)
        )
        post = bucket.presign_post(policy)

        assert post.url == "http://photos.s3.test/"
        fields = post.fields
        assert fields["key"] == "uploads/a.png"
        assert fields["x-amz-algorithm"] == "AWS4-HMAC-SHA256"
        assert fields["x-amz-credential"] == (
            f"{TEST_ACCESS_KEY_ID}/20260115/us-east-1/s3/aws4_request"
        )
        assert fields["x-amz-date"] == "20260115T123000Z"
        assert "x-amz-security-token" not in fields

        key = derive_sigv4_signing_key(
            TEST_SECRET_ACCESS_KEY, "20260115", "us-east-1"
        )
        assert fields["x-amz-signature"] == sigv4_sign(key, fields["policy"])

        document = _decode(fields["policy"])
        assert document["expiration"] == "2026-01-15T13:30:00.000Z"
        conditions = document["conditions"]
        assert ["eq", "$bucket", "photos"] in conditions
        assert ["eq", "$key", "uploads/a.png"] in conditions
        assert ["eq", "$Content-Type", "image/png"] in conditions
        assert ["content-length-range", 1, 1024] in conditions
        assert ["eq", "$x-amz-date", "20260115T123000Z"] in conditions

    def test_starts_with_becomes_dynamic_field(self, bucket: Bucket) -> None:
        policy = PostPolicy(60).add_starts_with_condition("key", "uploads/")
        post = bucket.presign_post(policy)
        assert post.dynamic_fields == {"key": "uploads/"}
        assert "key" not in post.fields
        assert ["starts-with", "$key", "uploads/"] in _decode(
            post.fields["policy"]
        )["conditions"]

    def test_session_token_included(self, region: Region) -> None:
        bucket = Bucket(
            "photos",
            region,
            Credentials(
                TEST_ACCESS_KEY_ID, TEST_SECRET_ACCESS_KEY, TEST_SESSION_TOKEN
            ),
            clock=lambda: TEST_TIME,
        )
        post = bucket.presign_post(
            PostPolicy(60).add_equals_condition("key", "k")
        )
        assert post.fields["x-amz-security-token"] == TEST_SESSION_TOKEN
        conditions = _decode(post.fields["policy"])["conditions"]
        assert ["eq", "$x-amz-security-token", TEST_SESSION_TOKEN] in (
            conditions
        )

    def test_key_condition_required(self, bucket: Bucket) -> None:
        with pytest.raises(ConfigError, match="key condition"):
            bucket.presign_post(PostPolicy(60))

    def test_expiry_over_maximum(self, bucket: Bucket) -> None:
        policy = PostPolicy(604801).add_equals_condition("key", "k")
        with pytest.raises(ConfigError, match="maximum"):
            bucket.presign_post(policy)

    def test_sigv4a_rejected(self, region: Region) -> None:
        bucket = Bucket(
            "photos",
            region,
            Credentials(TEST_ACCESS_KEY_ID, TEST_SECRET_ACCESS_KEY),
            signing_algorithm=SigningAlgorithm.SIGV4A,
            clock=lambda: TEST_TIME,
        )
        with pytest.raises(ConfigError, match="SigV4"):
            bucket.presign_post(PostPolicy(60).add_equals_condition("key", "k"))

    def test_anonymous_rejected(self, region: Region) -> None:
        bucket = Bucket.new_public("photos", region)
        with pytest.raises(ConfigError):
            bucket.presign_post(PostPolicy(60).add_equals_condition("key", "k"))


class TestConditions:
    """Condition validation."""

    @pytest.mark.parametrize(
        "element", ["bucket", "$x-amz-signature", "policy", ""]
    )
    def test_reserved_elements(self, element: str) -> None:
        with pytest.raises(ConfigError):
            PostPolicy(60).add_equals_condition(element, "v")

    def test_redirect_not_allowed_for_equals(self) -> None:
        with pytest.raises(ConfigError):
            PostPolicy(60).add_equals_condition("success_action_redirect", "x")

    @pytest.mark.parametrize(
        "element", ["success_action_status", "x-amz-storage-class"]
    )
    def test_starts_with_restrictions(self, element: str) -> None:
        with pytest.raises(ConfigError):
            PostPolicy(60).add_starts_with_condition(element, "")

    def test_starts_with_metadata_allowed(self) -> None:
        PostPolicy(60).add_starts_with_condition("x-amz-meta-owner", "")

    def test_content_length_range_via_generic_method(self) -> None:
        with pytest.raises(ConfigError, match="content_length_range"):
            PostPolicy(60).add_equals_condition("content-length-range", "1")

    @pytest.mark.parametrize(("low", "high"), [(-1, 10), (10, 1)])
    def test_invalid_length_range(self, low: int, high: int) -> None:
        with pytest.raises(ConfigError):
            PostPolicy(60).add_content_length_range_condition(low, high)

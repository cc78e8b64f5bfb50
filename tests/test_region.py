# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for region and endpoint resolution."""

import pytest

from s3lite.errors import ConfigError
from s3lite.region import (
    MAX_PRESIGN_EXPIRY,
    AddressingStyle,
    Endpoint,
    Region,
    resolve_endpoint,
)


class TestFromName:
    """Tests for Region.from_name."""

    @pytest.mark.parametrize(
        ("name", "host", "signing_name", "provider"),
        [
            ("us-east-1", "s3.amazonaws.com", "us-east-1", "aws"),
            (
                "eu-central-1",
                "s3.eu-central-1.amazonaws.com",
                "eu-central-1",
                "aws",
            ),
            (
                "cn-north-1",
                "s3.cn-north-1.amazonaws.com.cn",
                "cn-north-1",
                "aws",
            ),
            (
                "wa-us-east-1",
                "s3.us-east-1.wasabisys.com",
                "us-east-1",
                "wasabi",
            ),
            ("do-fra1", "fra1.digitaloceanspaces.com", "fra1", "digitalocean"),
            (
                "b2-us-west-004",
                "s3.us-west-004.backblazeb2.com",
                "us-west-004",
                "backblaze",
            ),
            ("yandex", "storage.yandexcloud.net", "ru-central1", "yandex"),
            ("gcs", "storage.googleapis.com", "auto", "gcs"),
        ],
    )
    def test_provider_table(
        self, name: str, host: str, signing_name: str, provider: str
    ) -> None:
        region = Region.from_name(name)
        assert region.host == host
        assert region.name == signing_name
        assert region.provider == provider
        assert region.scheme == "https"
        assert region.max_presign_expiry == MAX_PRESIGN_EXPIRY

    def test_gcs_defaults_to_path_style(self) -> None:
        assert Region.from_name("gcs").default_style is AddressingStyle.PATH

    def test_endpoint_url_resolves_as_custom(self) -> None:
        region = Region.from_name("http://localhost:9000")
        assert region.provider == "custom"
        assert region.host == "localhost:9000"
        assert region.scheme == "http"

    def test_unknown_region(self) -> None:
        with pytest.raises(ConfigError, match="Unknown region"):
            Region.from_name("mars-north-1")


class TestCustom:
    """Tests for Region.custom."""

    def test_default_port_stripped(self) -> None:
        assert Region.custom("x", "https://s3.example.com:443").host == (
            "s3.example.com"
        )

    def test_non_default_port_kept(self) -> None:
        assert Region.custom("x", "http://minio:9000").host == "minio:9000"

    def test_bare_host_gets_https(self) -> None:
        region = Region.custom("x", "s3.example.com")
        assert region.scheme == "https"
        assert region.endpoint == "https://s3.example.com"

    def test_streaming_without_length_allowed(self) -> None:
        minio = Region.custom("x", "http://minio:9000")
        assert not minio.requires_content_length
        assert Region.from_name("eu-west-1").requires_content_length

    def test_embedded_bucket(self) -> None:
        region = Region.custom("us-east-1", "http://minio:9000/foo")
        assert region.endpoint_bucket == "foo"
        assert region.default_style is AddressingStyle.PATH
        assert region.endpoint == "http://minio:9000/foo"

    @pytest.mark.parametrize(
        "endpoint",
        ["ftp://host", "http://", "http://a/b/c", "http://user@host"],
    )
    def test_invalid_endpoint(self, endpoint: str) -> None:
        with pytest.raises(ConfigError):
            Region.custom("x", endpoint)


class TestR2:
    """Tests for Region.r2."""

    def test_account_host(self) -> None:
        region = Region.r2("abc123")
        assert region.host == "abc123.r2.cloudflarestorage.com"
        assert region.name == "auto"

    def test_jurisdiction(self) -> None:
        assert Region.r2("abc123", jurisdiction="eu").host == (
            "abc123.eu.r2.cloudflarestorage.com"
        )

    def test_account_required(self) -> None:
        with pytest.raises(ConfigError):
            Region.r2("")


class TestResolveEndpoint:
    """Tests for resolve_endpoint."""

    def test_subdomain(self) -> None:
        region = Region.from_name("eu-central-1")
        endpoint = resolve_endpoint(region, "photos", AddressingStyle.SUBDOMAIN)
        assert endpoint == Endpoint(
            "https", "photos.s3.eu-central-1.amazonaws.com", ""
        )
        assert endpoint.url("/a.jpg") == (
            "https://photos.s3.eu-central-1.amazonaws.com/a.jpg"
        )

    def test_path(self) -> None:
        region = Region.from_name("eu-central-1")
        endpoint = resolve_endpoint(region, "photos", AddressingStyle.PATH)
        assert endpoint.host == "s3.eu-central-1.amazonaws.com"
        assert endpoint.url("/a.jpg") == (
            "https://s3.eu-central-1.amazonaws.com/photos/a.jpg"
        )

    def test_both_styles_address_same_object(self) -> None:
        """Host plus path name the same bucket and key in either style."""
        region = Region.custom("us-east-1", "http://s3.test")
        sub = resolve_endpoint(region, "b", AddressingStyle.SUBDOMAIN)
        path = resolve_endpoint(region, "b", AddressingStyle.PATH)
        assert sub.url("/k") == "http://b.s3.test/k"
        assert path.url("/k") == "http://s3.test/b/k"

    def test_service_level_uses_bare_host(self) -> None:
        region = Region.from_name("us-east-1")
        endpoint = resolve_endpoint(region, "", AddressingStyle.SUBDOMAIN)
        assert endpoint == Endpoint("https", "s3.amazonaws.com", "")

    def test_embedded_bucket_not_duplicated(self) -> None:
        region = Region.custom("us-east-1", "http://minio:9000/foo")
        endpoint = resolve_endpoint(region, "foo", AddressingStyle.PATH)
        assert endpoint.url("/k") == "http://minio:9000/foo/k"

    def test_embedded_bucket_with_other_bucket(self) -> None:
        region = Region.custom("us-east-1", "http://minio:9000/foo")
        endpoint = resolve_endpoint(region, "bar", AddressingStyle.PATH)
        assert endpoint.url("/k") == "http://minio:9000/foo/bar/k"

    def test_embedded_bucket_rejects_subdomain(self) -> None:
        region = Region.custom("us-east-1", "http://minio:9000/foo")
        with pytest.raises(ConfigError, match="path-style"):
            resolve_endpoint(region, "foo", AddressingStyle.SUBDOMAIN)

    def test_bucket_already_in_host(self) -> None:
        region = Region.custom("auto", "https://photos.s3.example.com")
        endpoint = resolve_endpoint(
            region, "photos", AddressingStyle.SUBDOMAIN
        )
        assert endpoint.host == "photos.s3.example.com"
        assert endpoint.base_path == ""

    @pytest.mark.parametrize("name", ["Upper", "under_score", "a..b", "-x"])
    def test_non_dns_bucket_rejects_subdomain(self, name: str) -> None:
        region = Region.from_name("us-east-1")
        with pytest.raises(ConfigError):
            resolve_endpoint(region, name, AddressingStyle.SUBDOMAIN)

    def test_non_dns_bucket_allowed_with_path(self) -> None:
        region = Region.from_name("us-east-1")
        endpoint = resolve_endpoint(region, "Upper", AddressingStyle.PATH)
        assert endpoint.base_path == "/Upper"

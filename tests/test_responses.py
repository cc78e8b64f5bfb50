# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for response classification and XML parsing."""

import xml.etree.ElementTree as ET

import pytest

from s3lite.errors import ConfigError, DecodeError, HttpError, ServiceError
from s3lite.responses import (
    CorsRule,
    HeadObjectResult,
    Tag,
    build_cors_xml,
    build_create_bucket_xml,
    build_tagging_xml,
    parse_error,
    parse_list_bucket_result,
    parse_list_buckets,
    parse_location,
    parse_tagging,
    raise_for_status,
)


_NS = 'xmlns="http://s3.amazonaws.com/doc/2006-03-01/"'


class TestRaiseForStatus:
    """Tests for raise_for_status classification."""

    def test_success_does_not_raise(self) -> None:
        raise_for_status(200, b"")
        raise_for_status(204, b"garbage")

    def test_provider_error_body(self) -> None:
        body = (
            b"<Error><Code>NoSuchKey</Code><Message>gone</Message>"
            b"<RequestId>R1</RequestId></Error>"
        )
        with pytest.raises(ServiceError) as exc_info:
            raise_for_status(404, body)
        err = exc_info.value
        assert err.code == "NoSuchKey"
        assert err.message == "gone"
        assert err.request_id == "R1"
        assert err.http_status == 404

    def test_empty_body(self) -> None:
        with pytest.raises(HttpError) as exc_info:
            raise_for_status(404, b"")
        assert exc_info.value.http_status == 404

    def test_unparseable_body_kept(self) -> None:
        with pytest.raises(HttpError) as exc_info:
            raise_for_status(502, b"<html>Bad Gateway</html>")
        assert exc_info.value.body == b"<html>Bad Gateway</html>"

    def test_error_without_code(self) -> None:
        assert parse_error(b"<Error><Message>x</Message></Error>") is None


class TestParseListBuckets:
    """Tests for parse_list_buckets."""

    def test_parses_buckets_and_owner(self) -> None:
        body = (
            f"<ListAllMyBucketsResult {_NS}>"
            "<Owner><ID>o1</ID><DisplayName>me</DisplayName></Owner>"
            "<Buckets>"
            "<Bucket><Name>a</Name>"
            "<CreationDate>2026-01-01T00:00:00.000Z</CreationDate></Bucket>"
            "<Bucket><Name>b</Name></Bucket>"
            "</Buckets></ListAllMyBucketsResult>"
        ).encode()
        result = parse_list_buckets(body)
        assert result.names == ["a", "b"]
        assert result.buckets[0].creation_date == "2026-01-01T00:00:00.000Z"
        assert result.owner_id == "o1"
        assert result.owner_display_name == "me"

    def test_wrong_root(self) -> None:
        with pytest.raises(DecodeError, match="Expected"):
            parse_list_buckets(b"<Other/>")

    def test_malformed(self) -> None:
        with pytest.raises(DecodeError, match="Malformed"):
            parse_list_buckets(b"<ListAllMyBucketsResult>")

    def test_empty(self) -> None:
        with pytest.raises(DecodeError):
            parse_list_buckets(b"")


class TestParseListBucketResult:
    """Tests for parse_list_bucket_result."""

    def test_v2_page(self) -> None:
        body = (
            f"<ListBucketResult {_NS}>"
            "<Name>photos</Name><Prefix>2026/</Prefix><KeyCount>1</KeyCount>"
            "<MaxKeys>1</MaxKeys><Delimiter>/</Delimiter>"
            "<IsTruncated>true</IsTruncated>"
            "<NextContinuationToken>tok</NextContinuationToken>"
            "<Contents><Key>2026/a.jpg</Key><Size>12</Size>"
            '<ETag>"abc"</ETag><StorageClass>STANDARD</StorageClass>'
            "<LastModified>2026-01-01T00:00:00.000Z</LastModified>"
            "</Contents>"
            "<CommonPrefixes><Prefix>2026/jan/</Prefix></CommonPrefixes>"
            "</ListBucketResult>"
        ).encode()
        page = parse_list_bucket_result(body)
        assert page.name == "photos"
        assert page.is_truncated
        assert page.next_continuation_token == "tok"
        assert page.key_count == 1
        assert page.max_keys == 1
        assert page.delimiter == "/"
        assert page.common_prefixes == ["2026/jan/"]
        (obj,) = page.contents
        assert obj.key == "2026/a.jpg"
        assert obj.size == 12
        assert obj.e_tag == '"abc"'

    def test_url_encoded_keys(self) -> None:
        body = (
            b"<ListBucketResult><Name>b</Name><EncodingType>url</EncodingType>"
            b"<IsTruncated>false</IsTruncated>"
            b"<Contents><Key>a%20b.txt</Key><Size>0</Size></Contents>"
            b"</ListBucketResult>"
        )
        assert parse_list_bucket_result(body).contents[0].key == "a b.txt"

    def test_missing_name(self) -> None:
        with pytest.raises(DecodeError, match="Name"):
            parse_list_bucket_result(
                b"<ListBucketResult><IsTruncated>false</IsTruncated>"
                b"</ListBucketResult>"
            )

    def test_invalid_size(self) -> None:
        with pytest.raises(DecodeError, match="Size"):
            parse_list_bucket_result(
                b"<ListBucketResult><Name>b</Name><Contents><Key>k</Key>"
                b"<Size>big</Size></Contents></ListBucketResult>"
            )


class TestTagging:
    """Tests for tagging documents."""

    def test_parse(self) -> None:
        body = (
            b"<Tagging><TagSet><Tag><Key>a</Key><Value>1</Value></Tag>"
            b"<Tag><Key>b</Key><Value></Value></Tag></TagSet></Tagging>"
        )
        assert parse_tagging(body) == [Tag("a", "1"), Tag("b", "")]

    def test_missing_tag_set(self) -> None:
        with pytest.raises(DecodeError, match="TagSet"):
            parse_tagging(b"<Tagging/>")

    def test_build_escapes(self) -> None:
        body = build_tagging_xml({"team": "r&d"})
        root = ET.fromstring(body)
        assert root.findtext("TagSet/Tag/Value") == "r&d"
        assert parse_tagging(body) == [Tag("team", "r&d")]


class TestParseLocation:
    """Tests for parse_location."""

    def test_region(self) -> None:
        body = f"<LocationConstraint {_NS}>eu-north-1</LocationConstraint>"
        assert parse_location(body.encode()) == "eu-north-1"

    def test_empty_means_us_east_1(self) -> None:
        assert parse_location(b"<LocationConstraint/>") == "us-east-1"

    def test_legacy_eu(self) -> None:
        assert parse_location(
            b"<LocationConstraint>EU</LocationConstraint>"
        ) == "eu-west-1"


class TestHeadObjectResult:
    """Tests for HeadObjectResult.from_headers."""

    def test_from_headers(self) -> None:
        result = HeadObjectResult.from_headers(
            {
                "Content-Length": "42",
                "Content-Type": "image/png",
                "ETag": '"abc"',
                "x-amz-meta-owner": "alice",
                "x-amz-delete-marker": "true",
            }
        )
        assert result.content_length == 42
        assert result.content_type == "image/png"
        assert result.e_tag == '"abc"'
        assert result.metadata == {"owner": "alice"}
        assert result.delete_marker

    def test_invalid_length(self) -> None:
        with pytest.raises(DecodeError):
            HeadObjectResult.from_headers({"content-length": "x"})


def test_create_bucket_xml() -> None:
    root = ET.fromstring(build_create_bucket_xml("eu-central-1"))
    assert root.tag == "CreateBucketConfiguration"
    assert root.findtext("LocationConstraint") == "eu-central-1"


class TestCorsXml:
    """Tests for build_cors_xml."""

    def test_full_rule(self) -> None:
        rule = CorsRule(
            allowed_methods=["GET", "PUT"],
            allowed_origins=["https://a.example"],
            allowed_headers=["*"],
            expose_headers=["ETag"],
            id="web & app",
            max_age_seconds=3000,
        )
        root = ET.fromstring(build_cors_xml([rule]))
        assert root.tag == "CORSConfiguration"
        elem = root.find("CORSRule")
        assert elem is not None
        assert [child.tag for child in elem] == [
            "ID",
            "AllowedHeader",
            "AllowedMethod",
            "AllowedMethod",
            "AllowedOrigin",
            "ExposeHeader",
            "MaxAgeSeconds",
        ]
        assert elem.findtext("ID") == "web & app"
        assert elem.findtext("MaxAgeSeconds") == "3000"

    def test_optional_elements_omitted(self) -> None:
        body = build_cors_xml([CorsRule(["GET"], ["*"])])
        assert body == (
            b"<CORSConfiguration><CORSRule><AllowedMethod>GET</AllowedMethod>"
            b"<AllowedOrigin>*</AllowedOrigin></CORSRule></CORSConfiguration>"
        )

    def test_rules_required(self) -> None:
        with pytest.raises(ConfigError):
            build_cors_xml([])

    def test_method_and_origin_required(self) -> None:
        with pytest.raises(ConfigError):
            build_cors_xml([CorsRule([], ["*"])])

# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Asyncio client for S3 and S3-compatible object storage."""

from s3lite.bucket import Bucket, BucketConfiguration, CreateBucketResponse
from s3lite.credentials import Credentials
from s3lite.errors import (
    ConfigError,
    DecodeError,
    HttpError,
    RequestTimeout,
    S3Error,
    ServiceError,
    TransferError,
)
from s3lite.post_policy import PostPolicy, PresignedPost
from s3lite.region import AddressingStyle, Region
from s3lite.responses import (
    BucketInfo,
    CorsRule,
    HeadObjectResult,
    ListBucketResult,
    ListBucketsResult,
    ObjectInfo,
    PutStreamResponse,
    ResponseData,
    Tag,
)
from s3lite.signing import SigningAlgorithm, presigned_url_is_valid
from s3lite.stream import ObjectStream


__all__ = [
    "AddressingStyle",
    "Bucket",
    "BucketConfiguration",
    "BucketInfo",
    "ConfigError",
    "CorsRule",
    "CreateBucketResponse",
    "Credentials",
    "DecodeError",
    "HeadObjectResult",
    "HttpError",
    "ListBucketResult",
    "ListBucketsResult",
    "ObjectInfo",
    "ObjectStream",
    "PostPolicy",
    "PresignedPost",
    "PutStreamResponse",
    "Region",
    "RequestTimeout",
    "ResponseData",
    "S3Error",
    "ServiceError",
    "SigningAlgorithm",
    "Tag",
    "TransferError",
    "presigned_url_is_valid",
]

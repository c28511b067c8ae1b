"""OCI registry support

A subset of the OCI distribution API, enough to resolve the digest
a registry serves for a tag.
"""
from .client import Client, parse_bearer_challenge
from .index import Index, Platform, PlatformDescriptor
from .reference import ImageReference
from .resolver import ExpectedDigestResolver

__all__ = [
    "Client",
    "ExpectedDigestResolver",
    "ImageReference",
    "Index",
    "Platform",
    "PlatformDescriptor",
    "parse_bearer_challenge",
]

"""
Key-set fetchers for resolving JWT signing keys.

This package contains implementations of the KeySetFetcher protocol,
retrieving an identity domain's published keys from its discovery document.
"""

from .jwks import JWKS_PATH, JWKSFetcher, jwks_url, normalize_domain

__all__ = ["JWKS_PATH", "JWKSFetcher", "jwks_url", "normalize_domain"]

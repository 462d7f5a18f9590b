"""
OAuth1 HMAC-SHA1 request signing for LTI 1.1 message exchange.

Signing is a pure function of its inputs: the consumer credentials, URL,
HTTP method and parameter set go in, the signature and a formatted
``Authorization`` header come out. Nothing is cached between calls.

Copyright (c) 2025 Gradelink Contributors
"""

import base64
import hashlib
import logging
import urllib.parse
from dataclasses import dataclass, field
from typing import Dict, Final, List, Mapping, Optional, Tuple, Union

from oauthlib.common import generate_nonce, generate_timestamp
from oauthlib.oauth1.rfc5849 import parameters as oauth_parameters
from oauthlib.oauth1.rfc5849 import signature as oauth_signature


logger = logging.getLogger(__name__)

SIGNATURE_METHOD: Final[str] = "HMAC-SHA1"
OAUTH_VERSION: Final[str] = "1.0"


@dataclass(frozen=True)
class SigningContext:
    """
    Consumer credentials shared by every signature an instance computes.

    Invariants:
    - Key and secret are fixed for the lifetime of the owning component
    """

    consumer_key: str
    consumer_secret: str = field(repr=False)


@dataclass(frozen=True)
class SignedRequest:
    """Outcome of signing one request."""

    signature: str
    oauth_params: Dict[str, str]
    header: str


def body_hash(body: Union[str, bytes]) -> str:
    """Base64-encoded SHA-1 digest of the exact request body bytes."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return base64.b64encode(hashlib.sha1(body).digest()).decode("ascii")


def _collect(url: str, parameters: Mapping[str, str]) -> List[Tuple[str, str]]:
    query = urllib.parse.urlparse(url).query
    params = oauth_signature.collect_parameters(uri_query=query, exclude_oauth_signature=True)
    params.extend(
        (str(name), str(value))
        for name, value in parameters.items()
        if name != "oauth_signature"
    )
    return params


def compute_signature(context: SigningContext,
                      url: str,
                      method: str,
                      parameters: Mapping[str, str]) -> str:
    """
    HMAC-SHA1 signature over exactly the given parameters and URL query.

    Nothing is added, so the inbound signature of a consumer can be
    recomputed from the parameters it sent.
    """
    normalized = oauth_signature.normalize_parameters(_collect(url, parameters))
    base_string = oauth_signature.signature_base_string(
        method.upper(),
        oauth_signature.base_string_uri(url),
        normalized
    )
    return oauth_signature.sign_hmac_sha1(base_string, context.consumer_secret, None)


def sign(context: SigningContext,
         url: str,
         method: str,
         parameters: Optional[Mapping[str, str]] = None) -> SignedRequest:
    """
    Sign a request with OAuth1 HMAC-SHA1.

    Protocol parameters already present in ``parameters`` are kept as
    supplied; missing ones are generated, with the consumer key taken from
    the signing context. Any ``oauth_signature`` entry is ignored.

    Args:
        context: Consumer credentials
        url: Absolute request URL; query parameters take part in the signature
        method: HTTP method
        parameters: Request parameters (form fields and/or oauth_* values)

    Returns:
        SignedRequest with the signature, the oauth_* parameters and the
        ``Authorization`` header value

    Raises:
        ValueError: The URL has no scheme or host, or a parameter is not text.
    """
    params: Dict[str, str] = dict(parameters or {})
    params.pop("oauth_signature", None)
    params.setdefault("oauth_consumer_key", context.consumer_key)
    params.setdefault("oauth_signature_method", SIGNATURE_METHOD)
    params.setdefault("oauth_nonce", generate_nonce())
    params.setdefault("oauth_timestamp", generate_timestamp())
    params.setdefault("oauth_version", OAUTH_VERSION)

    digest = compute_signature(context, url, method, params)

    oauth_params = {
        name: str(value) for name, value in params.items() if name.startswith("oauth_")
    }
    oauth_params["oauth_signature"] = digest
    header = oauth_parameters.prepare_headers(sorted(oauth_params.items()))["Authorization"]

    logger.debug(f"Signed {method.upper()} {url} with {len(params)} parameters")
    return SignedRequest(signature=digest, oauth_params=oauth_params, header=header)


__all__ = ["SigningContext", "SignedRequest", "sign", "compute_signature", "body_hash", "SIGNATURE_METHOD"]

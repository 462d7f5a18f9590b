"""
Inbound OAuth1 signature verification for requests sent by a Tool Consumer.
"""

import hmac
import logging
from dataclasses import dataclass, field
from typing import Any, Final, Mapping, Optional

from gradelink.errors import ConfigurationError
from gradelink.integration.signing import SigningContext, compute_signature


logger = logging.getLogger(__name__)

DEFAULT_PORTS: Final[frozenset] = frozenset({80, 443})


@dataclass(frozen=True)
class InboundRequest:
    """A signed request as received: absolute URL, method and parameters."""

    url: str
    http_method: str
    parameters: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RequestContext:
    """
    Server-side view of the current HTTP request.

    Supplied by whatever web layer hosts the provider. The URL is rebuilt
    from the server name, port and request URI; the port is left out when it
    is 80 or 443 regardless of scheme, so an HTTP server behind an HTTPS
    proxy still produces the URL the consumer signed.
    """

    server_name: str
    request_uri: str
    form: Mapping[str, str] = field(default_factory=dict)
    server_port: int = 80
    https: bool = False

    @property
    def url(self) -> str:
        url = "https://" if self.https else "http://"
        url += self.server_name
        if int(self.server_port) not in DEFAULT_PORTS:
            url += f":{self.server_port}"
        return url + self.request_uri

    def to_inbound_request(self) -> InboundRequest:
        return InboundRequest(url=self.url, http_method="POST", parameters=dict(self.form))

    @classmethod
    def from_wsgi_environ(cls, environ: Mapping[str, Any],
                          form: Optional[Mapping[str, str]] = None) -> "RequestContext":
        """
        Build a request context from a WSGI environ.

        Args:
            environ: The WSGI environment of the current request
            form: Decoded form parameters of the request body

        Returns:
            RequestContext for the request
        """
        https = (
            environ.get("HTTPS", "").lower() == "on"
            or environ.get("wsgi.url_scheme") == "https"
        )
        request_uri = environ.get("REQUEST_URI") or environ.get("RAW_URI")
        if not request_uri:
            request_uri = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
            if environ.get("QUERY_STRING"):
                request_uri += "?" + environ["QUERY_STRING"]

        return cls(
            server_name=environ.get("SERVER_NAME", ""),
            request_uri=request_uri or "/",
            form=dict(form or {}),
            server_port=int(environ.get("SERVER_PORT") or (443 if https else 80)),
            https=https,
        )


class SignatureVerifier:
    """
    Verifies OAuth1 HMAC-SHA1 signatures with a fixed set of credentials.

    The signature is recomputed from exactly the parameters the consumer
    sent and compared in constant time. The digest is always HMAC-SHA1, so
    a request claiming another signature method never verifies. A mismatch
    is a normal negative result; only a request carrying no signature at
    all is treated as misuse.
    """

    def __init__(self, context: SigningContext):
        self._context = context

    @property
    def context(self) -> SigningContext:
        return self._context

    def verify(self, url: str, method: str, parameters: Mapping[str, str]) -> bool:
        """
        Verify the OAuth1 signature of a request.

        Args:
            url: URL of the request
            method: HTTP method of the request, i.e. "POST" or "GET"
            parameters: Request parameters, including ``oauth_signature``

        Returns:
            True if the signature matches, False otherwise

        Raises:
            ConfigurationError: The signature to verify could not be found.
        """
        supplied = parameters.get("oauth_signature")
        if not supplied:
            raise ConfigurationError(
                "The signature to verify could not be found.",
                {"url": url}
            )

        try:
            expected = compute_signature(self._context, url, method, parameters)
        except ValueError as e:
            logger.warning(f"Signature for {url} could not be recomputed: {e}")
            return False

        if not expected:
            return False

        verified = hmac.compare_digest(str(supplied).encode("utf-8"), expected.encode("utf-8"))
        if not verified:
            logger.warning(f"OAuth signature mismatch for {method.upper()} {url}")
        return verified

    def verify_inbound(self, request: InboundRequest) -> bool:
        return self.verify(request.url, request.http_method, request.parameters)

    def verify_request(self, request: RequestContext) -> bool:
        """Verify the POST request described by a server request context."""
        return self.verify_inbound(request.to_inbound_request())


__all__ = ["InboundRequest", "RequestContext", "SignatureVerifier"]

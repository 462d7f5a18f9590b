"""
Gradelink LTI Tool Provider: OAuth1 verification and Basic Outcomes grade passback

This module ties the signing, verification and outcome message components
together. ``OutcomeClient`` sends signed read/replace/delete requests to a
consumer's outcome service; ``ToolProvider`` is the facade a web application
holds for one consumer key and secret.

Each send returns its own ``OutcomeResult``; nothing about the last exchange
is kept on the instance.

Copyright (c) 2025 Gradelink Contributors
"""

import logging
from typing import Any, Mapping, Optional, Union

import httpx

from gradelink.configuration import (
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
    ProviderConfiguration,
)
from gradelink.errors import ConfigurationError, ResultError
from gradelink.integration.outcomes import (
    OutcomeAction,
    OutcomeEnvelope,
    OutcomeRequest,
    OutcomeResult,
    build_result_body,
    parse_result_response,
)
from gradelink.integration.signing import SigningContext, body_hash, sign
from gradelink.integration.verification import RequestContext, SignatureVerifier


logger = logging.getLogger(__name__)

OUTCOME_SERVICE_URL_PARAMETER = "lis_outcome_service_url"
RESULT_SOURCEDID_PARAMETER = "lis_result_sourcedid"
XML_CONTENT_TYPE = "application/xml"


class OutcomeClient:
    """
    Client for a Tool Consumer's Basic Outcomes service.

    One synchronous POST per send, always bounded by a timeout and never
    retried. An ``httpx.Client`` may be injected (and stays owned by the
    caller); otherwise one is created and closed with this client.
    """

    def __init__(self,
                 context: SigningContext,
                 http_client: Optional[httpx.Client] = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 user_agent: str = DEFAULT_USER_AGENT,
                 verify_tls: bool = True):
        if timeout is None or timeout <= 0:
            raise ConfigurationError("The request timeout must be a positive number of seconds.")

        self._context = context
        self._timeout = timeout
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.Client(
            timeout=timeout,
            verify=verify_tls,
            headers={"User-Agent": user_agent},
        )

    def close(self) -> None:
        if self._owns_http_client:
            self._http_client.close()

    def __enter__(self) -> "OutcomeClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def build_result_body(self, sourced_id: str,
                          action: Union[OutcomeAction, str] = OutcomeAction.READ,
                          score: Any = None) -> str:
        return build_result_body(sourced_id, action, score)

    def build_result_auth(self, url: str, body: Union[str, bytes]) -> str:
        """
        Make an Authorization header for a result request.

        The header signs ``oauth_body_hash``, the SHA-1 digest of the exact
        body bytes, so the body must be sent exactly as hashed.

        Args:
            url: The URL the request will be made against
            body: The body that will be posted to the URL

        Returns:
            The ``OAuth ...`` Authorization header value

        Raises:
            ConfigurationError: The URL is not absolute.
        """
        try:
            signed = sign(self._context, url, "POST", {"oauth_body_hash": body_hash(body)})
        except ValueError as e:
            raise ConfigurationError(
                f"The outcome service URL is invalid ({e}).",
                {"url": url}
            ) from e
        return signed.header

    def send_result(self,
                    parameters: Mapping[str, str],
                    action: Union[OutcomeAction, str] = OutcomeAction.READ,
                    score: Any = None) -> OutcomeResult:
        """
        Send a result request to an outcome service.

        Args:
            parameters: Launch parameters holding ``lis_outcome_service_url``
                and ``lis_result_sourcedid``
            action: "read" (the default), "replace" or "delete"
            score: For "replace", a number between 0 and 1 inclusive

        Returns:
            OutcomeResult; truthy when the consumer reported success

        Raises:
            ConfigurationError: The outcome service URL or sourcedId is
                missing, the action is invalid, or the replace score is not a
                number between 0 and 1 inclusive.
            ResultError: The request failed, or the consumer replied with an
                invalid XML document.
        """
        url = parameters.get(OUTCOME_SERVICE_URL_PARAMETER)
        if not url:
            raise ConfigurationError(
                "The outcome service URL is unavailable.",
                {"parameter": OUTCOME_SERVICE_URL_PARAMETER}
            )

        sourced_id = parameters.get(RESULT_SOURCEDID_PARAMETER)
        if not sourced_id:
            raise ConfigurationError(
                "The result sourced ID is unavailable.",
                {"parameter": RESULT_SOURCEDID_PARAMETER}
            )

        request = OutcomeRequest.create(sourced_id, action, score)
        envelope = OutcomeEnvelope.for_request(request)
        body = envelope.serialize().encode("utf-8")
        headers = {
            "Authorization": self.build_result_auth(url, body),
            "Content-Type": XML_CONTENT_TYPE,
        }

        try:
            response = self._http_client.post(url, content=body, headers=headers, timeout=self._timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Outcome {request.action.value} request to {url} failed: {e}")
            raise ResultError(
                f"The result could not be sent to the consumer ({e}).",
                {"url": url, "action": request.action.value,
                 "message_identifier": envelope.message_identifier}
            ) from e

        result = parse_result_response(response.content, envelope.message_identifier)
        logger.info(
            f"Outcome {request.action.value} for {url} returned "
            f"{result.code_major or 'no status'} ({envelope.message_identifier})"
        )
        return result

    def send_read(self, request: RequestContext) -> OutcomeResult:
        """Read the current score for the sourcedId of the current request."""
        return self.send_result(request.form, OutcomeAction.READ)

    def send_replace(self, request: RequestContext, score: Any) -> OutcomeResult:
        """Replace the score for the sourcedId of the current request."""
        return self.send_result(request.form, OutcomeAction.REPLACE, score)

    def send_delete(self, request: RequestContext) -> OutcomeResult:
        """Delete the score for the sourcedId of the current request."""
        return self.send_result(request.form, OutcomeAction.DELETE)


class ToolProvider:
    """
    LTI 1.1 Tool Provider for one consumer key and secret.

    Verifies inbound OAuth1 signatures and reports outcomes back to the
    consumer. The signing context is fixed at construction.
    """

    def __init__(self,
                 key: str,
                 secret: str,
                 http_client: Optional[httpx.Client] = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 user_agent: str = DEFAULT_USER_AGENT,
                 verify_tls: bool = True):
        """
        Initialize the provider.

        Args:
            key: OAuth1 consumer key used for message signing
            secret: OAuth1 consumer secret used for message signing
            http_client: Optional HTTP client for outcome requests
            timeout: Outcome request timeout in seconds
            user_agent: User-Agent of outcome requests
            verify_tls: Verify the outcome service certificate
        """
        self._context = SigningContext(consumer_key=key, consumer_secret=secret)
        self.verifier = SignatureVerifier(self._context)
        self.outcomes = OutcomeClient(
            self._context,
            http_client=http_client,
            timeout=timeout,
            user_agent=user_agent,
            verify_tls=verify_tls,
        )

    @classmethod
    def from_configuration(cls, configuration: ProviderConfiguration,
                           http_client: Optional[httpx.Client] = None) -> "ToolProvider":
        return cls(
            configuration.consumer_key,
            configuration.consumer_secret,
            http_client=http_client,
            timeout=configuration.timeout,
            user_agent=configuration.user_agent,
            verify_tls=configuration.verify_tls,
        )

    @property
    def consumer_key(self) -> str:
        return self._context.consumer_key

    def close(self) -> None:
        self.outcomes.close()

    def __enter__(self) -> "ToolProvider":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # Inbound verification

    def verify(self, url: str, method: str, parameters: Mapping[str, str]) -> bool:
        return self.verifier.verify(url, method, parameters)

    def verify_request(self, request: RequestContext) -> bool:
        return self.verifier.verify_request(request)

    # Outcomes

    def build_result_body(self, sourced_id: str,
                          action: Union[OutcomeAction, str] = OutcomeAction.READ,
                          score: Any = None) -> str:
        return self.outcomes.build_result_body(sourced_id, action, score)

    def build_result_auth(self, url: str, body: Union[str, bytes]) -> str:
        return self.outcomes.build_result_auth(url, body)

    def send_result(self, parameters: Mapping[str, str],
                    action: Union[OutcomeAction, str] = OutcomeAction.READ,
                    score: Any = None) -> OutcomeResult:
        return self.outcomes.send_result(parameters, action, score)

    def send_read(self, request: RequestContext) -> OutcomeResult:
        return self.outcomes.send_read(request)

    def send_replace(self, request: RequestContext, score: Any) -> OutcomeResult:
        return self.outcomes.send_replace(request, score)

    def send_delete(self, request: RequestContext) -> OutcomeResult:
        return self.outcomes.send_delete(request)


__all__ = [
    "OutcomeClient",
    "ToolProvider",
    "OUTCOME_SERVICE_URL_PARAMETER",
    "RESULT_SOURCEDID_PARAMETER",
]

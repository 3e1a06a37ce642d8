"""
QuoteClient - route quotes from the Jupiter v6 quote API.
"""
import logging
import urllib.parse
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ._rate_limited_log import rate_limited_log
from .config import DEFAULT_QUOTE_URL
from .exceptions import ErrorCode, UpstreamUnavailable, ValidationError
from .utils import is_valid_address

DEFAULT_SLIPPAGE_BPS = 100
MAX_SLIPPAGE_BPS = 10_000


class QuoteClient:
    """
    Client for the external quoting service.

    Transport failures, timeouts and non-2xx responses surface as
    UpstreamUnavailable with code QUOTE_UNAVAILABLE.
    """

    def __init__(
        self,
        quote_url: str = DEFAULT_QUOTE_URL,
        timeout: float = 10,
        retry_count: int = 2,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None
    ):
        parsed = urllib.parse.urlparse(quote_url)
        if parsed.scheme not in ("http", "https"):
            raise ValueError(f"quote_url must use http:// or https:// (got: {parsed.scheme}://)")

        self.quote_url = quote_url
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

        self.session = session or requests.Session()
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

    def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
    ) -> Dict[str, Any]:
        """
        Fetch the best ExactIn route.

        Args:
            input_mint: Mint being sold
            output_mint: Mint being bought
            amount: Input amount in base units
            slippage_bps: Allowed slippage in basis points

        Returns:
            Route document as returned by the quoting service

        Raises:
            ValidationError: If the request parameters are malformed
            UpstreamUnavailable: If the quoting service cannot provide a route
        """
        errors = []
        for name, value in (("fromMint", input_mint), ("toMint", output_mint)):
            if not is_valid_address(value):
                errors.append(f"{name}: invalid address {value!r}")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            errors.append(f"amount: must be a positive integer (got {amount!r})")
        if not 0 <= slippage_bps <= MAX_SLIPPAGE_BPS:
            errors.append(f"slippageBps: must be between 0 and {MAX_SLIPPAGE_BPS}")
        if errors:
            raise ValidationError("Validation failed", errors=errors)

        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": slippage_bps,
            "swapMode": "ExactIn",
        }
        self.logger.debug(f"Requesting quote {input_mint[:10]}... -> {output_mint[:10]}... amount={amount}")

        try:
            response = self.session.get(self.quote_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            quote = response.json()
        except requests.RequestException as e:
            rate_limited_log(f"Quote service unavailable: {e}", level="warning", logger_instance=self.logger)
            raise UpstreamUnavailable(
                "Quote service unavailable", details=str(e), code=ErrorCode.QUOTE_UNAVAILABLE
            ) from e
        except ValueError as e:
            raise UpstreamUnavailable(
                "Quote service returned invalid JSON", details=str(e), code=ErrorCode.QUOTE_UNAVAILABLE
            ) from e

        if not isinstance(quote, dict) or "inputMint" not in quote or "outAmount" not in quote:
            raise UpstreamUnavailable(
                "Quote service returned no route",
                details=quote.get("error") if isinstance(quote, dict) else None,
                code=ErrorCode.QUOTE_UNAVAILABLE,
            )
        return quote

"""Central validation pass for payment requests.

Everything the engine consumes goes through validate_request() exactly once.
Null, empty and malformed `from` addresses are dropped, accept entries are
resolved against the token catalog, and the result is a ValidatedRequest the
graph builder can trust without re-checking.
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from pydantic import ValidationError

from payroute.chains import AddressFamily
from payroute.config import Settings, get_settings
from payroute.errors import InvalidRequest
from payroute.models import AcceptTarget, PaymentRequest, ResolvedTarget, ValidatedRequest
from payroute.tokens import TokenCatalog

logger = logging.getLogger(__name__)

EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
LOOSE_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]+$")
SOLANA_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def address_family(address: Any, strict: bool = True) -> Optional[str]:
    """Detect the address family of an address, or None if it is not valid.

    With strict=False any 0x-prefixed hex string counts as an EVM address,
    which keeps short placeholder addresses usable in dry runs.
    """
    if not address or not isinstance(address, str):
        return None

    address = address.strip()
    evm_pattern = EVM_ADDRESS_RE if strict else LOOSE_EVM_ADDRESS_RE

    if evm_pattern.match(address):
        return AddressFamily.EVM
    if SOLANA_ADDRESS_RE.match(address):
        return AddressFamily.SOLANA
    return None


def validate_address(address: Any, family: str, strict: bool = True) -> tuple[bool, str]:
    """Validate an address for a chain family.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not address or not isinstance(address, str):
        return False, "Address is required"

    detected = address_family(address, strict=strict)
    if detected is None:
        return False, f"Invalid address format: {address}"
    if detected != family:
        return False, f"Address {address} is not a {family} address"
    return True, ""


def _parse_amount(value: Optional[str], label: str) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        amount = Decimal(value.strip())
    except InvalidOperation:
        raise InvalidRequest(f"{label} is not a decimal number: {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidRequest(f"{label} must be a positive amount: {value!r}")
    return amount


def _clean_sources(raw: list[Any], strict: bool, rejected: list[str]) -> tuple[str, ...]:
    sources: list[str] = []
    seen: set[str] = set()

    for entry in raw:
        if entry is None or (isinstance(entry, str) and not entry.strip()):
            continue
        if address_family(entry, strict=strict) is None:
            rejected.append(f"from: invalid address {entry!r}")
            continue

        address = entry.strip()
        dedupe_key = address.lower() if address.startswith("0x") else address
        if dedupe_key in seen:
            continue
        seen.add(dedupe_key)
        sources.append(address)

    return tuple(sources)


def _resolve_target(
    entry: AcceptTarget,
    request: PaymentRequest,
    request_amount: Optional[Decimal],
    catalog: TokenCatalog,
    strict: bool,
    rejected: list[str],
) -> Optional[ResolvedTarget]:
    chain = catalog.get_chain(entry.blockchain)
    if chain is None:
        rejected.append(f"accept: unknown chain {entry.blockchain!r}")
        return None

    token = catalog.resolve(entry.token, chain.key)
    if token is None:
        rejected.append(f"accept: token {entry.token!r} not found on {chain.key}")
        return None

    receiver = entry.receiver or request.to
    if not receiver:
        rejected.append(f"accept: no receiver for {token.symbol} on {chain.key}")
        return None
    ok, error = validate_address(receiver, chain.family, strict=strict)
    if not ok:
        rejected.append(f"accept: {error}")
        return None

    try:
        amount = _parse_amount(entry.amount, "accept amount") or request_amount
    except InvalidRequest as e:
        rejected.append(f"accept: {e}")
        return None
    if amount is None:
        rejected.append(f"accept: no amount for {token.symbol} on {chain.key}")
        return None

    return ResolvedTarget(chain=chain.key, token=token, receiver=receiver.strip(), amount=amount)


def _implicit_targets(request: PaymentRequest, catalog: TokenCatalog) -> list[AcceptTarget]:
    """Targets implied by `token`/`blockchain` when no accept list is given."""
    if not request.token:
        return []
    if request.blockchain:
        return [AcceptTarget(blockchain=request.blockchain, token=request.token)]
    return [
        AcceptTarget(blockchain=chain, token=request.token)
        for chain in catalog.chains
        if catalog.resolve(request.token, chain) is not None
    ]


def validate_request(
    request: Union[PaymentRequest, dict, None],
    catalog: TokenCatalog,
    settings: Optional[Settings] = None,
) -> ValidatedRequest:
    """Run the single validation pass over a payment request.

    A None request validates to an empty, non-routable request. Bad
    individual entries are dropped and listed in `rejected`; only requests
    that cannot be interpreted at all raise InvalidRequest.
    """
    settings = settings or get_settings()
    strict = settings.strict_address_validation

    if request is None:
        return ValidatedRequest(
            sources=(), receiver=None, amount=None, token=None, targets=(),
            slippage=settings.default_slippage,
        )

    if isinstance(request, dict):
        try:
            request = PaymentRequest.model_validate(request)
        except ValidationError as e:
            raise InvalidRequest(f"Malformed payment request: {e}") from e
    elif not isinstance(request, PaymentRequest):
        raise InvalidRequest(f"Unsupported request type: {type(request).__name__}")

    rejected: list[str] = []
    amount = _parse_amount(request.amount, "amount")
    sources = _clean_sources(request.from_, strict, rejected)

    entries = [e for e in request.accept if e is not None]
    if not entries:
        entries = _implicit_targets(request, catalog)

    targets: list[ResolvedTarget] = []
    for entry in entries:
        target = _resolve_target(entry, request, amount, catalog, strict, rejected)
        if target is not None and target not in targets:
            targets.append(target)

    for reason in rejected:
        logger.warning(f"Dropped request entry: {reason}")

    validated = ValidatedRequest(
        sources=sources,
        receiver=request.to,
        amount=amount,
        token=request.token.upper() if request.token else None,
        targets=tuple(targets),
        slippage=request.slippage if request.slippage is not None else settings.default_slippage,
        rejected=tuple(rejected),
    )
    logger.debug(
        f"Validated request: {len(validated.sources)} source(s), "
        f"{len(validated.targets)} target(s), {len(rejected)} rejected"
    )
    return validated

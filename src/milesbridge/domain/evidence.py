"""Balance extraction and predicate evaluation over untrusted proof documents.

Proof payloads arrive in whatever shape the attestation SDK of the day produces.
:func:`extract_balance` walks the known shapes in a fixed order and never raises:
a document it cannot read yields ``0``, which callers treat as "could not verify".
"""

from __future__ import annotations

import json
import logging
import math
import operator
import re
from collections.abc import Callable, Mapping
from typing import Any, Final

from milesbridge.domain.model import PredicateOp

log = logging.getLogger(__name__)

BALANCE_ALIASES: Final[tuple[str, ...]] = (
    "AccountBalance",
    "balance",
    "miles",
    "points",
    "mileageBalance",
)

_NON_NUMERIC = re.compile(r"[^0-9.]")

# sub-proofs nest a few levels at most; anything deeper reads as no balance
MAX_PROOF_DEPTH: Final[int] = 16

_COMPARATORS: Final[dict[PredicateOp, Callable[[float, float], bool]]] = {
    PredicateOp.GTE: operator.ge,
    PredicateOp.EQ: operator.eq,
    PredicateOp.GT: operator.gt,
}


def safe_json_loads(value: object) -> object:
    """Decode ``value`` when it is a JSON string; return ``None`` on bad JSON.

    Non-string values pass through unchanged.
    """

    if not isinstance(value, str | bytes):
        return value
    try:
        return json.loads(value)
    except (ValueError, RecursionError):
        return None


def to_number(value: object) -> float:
    """Normalise a numeric-looking value.

    Strings drop every character that is not a digit or a dot (``"8,030 miles"``
    becomes ``8030.0``). Anything unparsable yields ``0``.
    """

    if isinstance(value, bool):
        return 0.0
    if isinstance(value, int | float):
        number = float(value)
        return number if math.isfinite(number) else 0.0
    if isinstance(value, str):
        cleaned = _NON_NUMERIC.sub("", value)
        try:
            number = float(cleaned)
        except ValueError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    return 0.0


def _pick_alias(params: object, aliases: tuple[str, ...] = BALANCE_ALIASES) -> object | None:
    if not isinstance(params, Mapping):
        return None
    mapping: Mapping[str, Any] = params
    for key in aliases:
        value = mapping.get(key)
        # empty strings and zeroes fall through to the next alias
        if value:
            return value
    return None


def nested_deeper_than(document: object, limit: int = MAX_PROOF_DEPTH) -> bool:
    """True when containers in ``document`` nest more than ``limit`` levels."""

    stack: list[tuple[object, int]] = [(document, 0)]
    while stack:
        node, depth = stack.pop()
        if isinstance(node, Mapping):
            children: list[object] = list(node.values())
        elif isinstance(node, list):
            children = list(node)
        else:
            continue
        if depth >= limit and children:
            return True
        stack.extend((child, depth + 1) for child in children)
    return False


def _from_sequence(items: list[Any], depth: int) -> float:
    for item in items:
        balance = _extract(item, depth + 1)
        if balance > 0:
            return balance
    return 0.0


def extract_balance(document: object) -> float:
    """Return the account balance carried by a proof document, or ``0``."""

    return _extract(document, 0)


def _extract(document: object, depth: int) -> float:  # noqa: C901, PLR0911, PLR0912
    if depth > MAX_PROOF_DEPTH:
        log.debug("Proof document nested deeper than %d levels", MAX_PROOF_DEPTH)
        return 0.0
    if isinstance(document, str | bytes):
        document = safe_json_loads(document)
    if not document:
        return 0.0

    if isinstance(document, list):
        return _from_sequence(document, depth)
    if not isinstance(document, Mapping):
        return 0.0
    data: Mapping[str, Any] = document

    # (a) direct field, as sent by the local backend and manual callbacks
    if data.get("balance") is not None:
        return to_number(data["balance"])

    # (b) top-level extracted parameters
    value = _pick_alias(data.get("extractedParameters"))
    if value is not None:
        return to_number(value)

    claim = data.get("claimData")
    if isinstance(claim, Mapping):
        claim_data: Mapping[str, Any] = claim
        # (c) JSON-encoded claim context
        context = safe_json_loads(claim_data.get("context"))
        if isinstance(context, Mapping):
            value = _pick_alias(context.get("extractedParameters"))
            if value is not None:
                return to_number(value)
        # (d) JSON-encoded claim parameters
        parameters = safe_json_loads(claim_data.get("parameters"))
        if isinstance(parameters, Mapping):
            value = _pick_alias(parameters.get("paramValues"))
            if value is not None:
                return to_number(value)

    # (f) nested proofs
    proofs = data.get("proofs")
    if isinstance(proofs, list):
        balance = _from_sequence(proofs, depth)
        if balance > 0:
            return balance

    # older SDKs put the parameter map or the context at the top level
    parameters = safe_json_loads(data.get("parameters"))
    value = _pick_alias(parameters)
    if value is not None:
        return to_number(value)

    context = safe_json_loads(data.get("context"))
    if isinstance(context, Mapping):
        value = _pick_alias(context.get("extractedParameters"))
        if value is not None:
            return to_number(value)

    log.debug("No balance found in proof document with keys %s", sorted(data)[:10])
    return 0.0


def evaluate_predicate(
    response_data: object, field: str, value: float, op: PredicateOp
) -> bool:
    """Evaluate ``response_data[field] <op> value``; non-numeric operands are ``False``."""

    if not isinstance(response_data, Mapping):
        return False
    data: Mapping[str, Any] = response_data
    actual = data.get(field)
    if isinstance(actual, bool) or not isinstance(actual, int | float):
        return False
    if not math.isfinite(actual):
        return False
    try:
        comparator = _COMPARATORS[PredicateOp(op)]
    except ValueError:
        return False
    return comparator(float(actual), float(value))

"""Risk analyzer — classifies shipping/delivery risks on an order snapshot.

Pure and deterministic: no I/O, no app context. Each check emits at most
one finding. The analyzer never blocks anything; callers such as the
shipment gate in order_service decide what to do with the result.

Input is the plain-dict shape produced by Order.to_snapshot().
"""

import re
from dataclasses import asdict, dataclass, field

HIGH = "high"
MEDIUM = "medium"
LOW = "low"

# ₹50,000 in paise
DEFAULT_HIGH_COD_THRESHOLD = 5_000_000

REQUIRED_ADDRESS_FIELDS = [
    "full_name",
    "phone",
    "address_line1",
    "city",
    "state",
    "postal_code",
]

# Substring matches
PLACEHOLDER_TOKENS = ["test", "n/a", "xyz", "abc", "dummy", "sample"]
# Whole-word matches; as substrings these hit real place names ("Chennai")
PLACEHOLDER_WORDS = ["na", "address"]

FAILED_DELIVERY_MARKERS = [
    "failed delivery",
    "undelivered",
    "rto initiated",
    "rto",
    "customer refused",
]

_PINCODE_RE = re.compile(r"^[1-9][0-9]{5}$")
_PHONE_RE = re.compile(r"^[6-9][0-9]{9}$")
_PHONE_STRIP_RE = re.compile(r"[\s\-()]")
_PLACEHOLDER_WORD_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(w) for w in PLACEHOLDER_WORDS) + r")\b"
)


@dataclass(frozen=True)
class RiskFinding:
    type: str
    severity: str
    message: str

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class RiskAnalysis:
    risks: list = field(default_factory=list)

    @property
    def has_risks(self):
        return len(self.risks) > 0

    @property
    def risk_count(self):
        return len(self.risks)

    @property
    def high_severity_count(self):
        return sum(1 for r in self.risks if r.severity == HIGH)

    def types(self):
        return [r.type for r in self.risks]

    def to_dict(self):
        return {
            "has_risks": self.has_risks,
            "risk_count": self.risk_count,
            "risks": [r.to_dict() for r in self.risks],
            "high_severity_count": self.high_severity_count,
        }


def _blank(value):
    return value is None or str(value).strip() == ""


def is_valid_pincode(postal_code):
    """Indian PIN: six digits, no leading zero."""
    if postal_code is None:
        return False
    return bool(_PINCODE_RE.match(str(postal_code)))


def is_valid_phone(phone):
    """Indian mobile: 10 digits starting 6-9, ignoring spaces, hyphens, parens."""
    if not phone:
        return False
    cleaned = _PHONE_STRIP_RE.sub("", str(phone))
    return bool(_PHONE_RE.match(cleaned))


def has_incomplete_address(address):
    if not address:
        return True

    for name in REQUIRED_ADDRESS_FIELDS:
        if _blank(address.get(name)):
            return True

    if len(str(address["address_line1"]).strip()) < 5:
        return True

    address_text = " ".join([
        str(address.get("address_line1") or ""),
        str(address.get("address_line2") or ""),
        str(address.get("city") or ""),
    ]).lower()

    if any(token in address_text for token in PLACEHOLDER_TOKENS):
        return True
    return bool(_PLACEHOLDER_WORD_RE.search(address_text))


def has_high_cod_value(amount, payment_method, threshold=DEFAULT_HIGH_COD_THRESHOLD):
    return payment_method == "cod" and (amount or 0) > threshold


def has_failed_delivery_history(tracking_history):
    for entry in tracking_history or []:
        status = str(entry.get("status") or "").lower()
        if any(marker in status for marker in FAILED_DELIVERY_MARKERS):
            return True
    return False


def _order_total(order):
    total = order.get("total")
    if total is None:
        total = order.get("total_amount")
    return total or 0


def analyze_order_risks(order, high_cod_threshold=DEFAULT_HIGH_COD_THRESHOLD):
    """Run every check against an order snapshot.

    Returns a RiskAnalysis; `high_severity_count > 0` is what the shipment
    gate treats as "needs manual review".
    """
    address = order.get("shipping_address") or {}
    payment = order.get("payment") or {}
    shipping = order.get("shipping") or {}
    risks = []

    if has_incomplete_address(address):
        risks.append(RiskFinding(
            "incomplete_address", HIGH,
            "Address is incomplete or contains placeholder text",
        ))

    if not is_valid_pincode(address.get("postal_code")):
        risks.append(RiskFinding(
            "invalid_pincode", HIGH, "Invalid PIN code format",
        ))

    if not is_valid_phone(address.get("phone")):
        risks.append(RiskFinding(
            "invalid_phone", MEDIUM, "Invalid or incomplete phone number",
        ))

    total = _order_total(order)
    if has_high_cod_value(total, payment.get("method"), high_cod_threshold):
        risks.append(RiskFinding(
            "high_cod_value", MEDIUM, f"High COD value: ₹{total / 100:,.2f}",
        ))

    if has_failed_delivery_history(shipping.get("tracking_history")):
        risks.append(RiskFinding(
            "failed_delivery_history", HIGH, "Previous failed delivery attempt",
        ))

    if address.get("verified_delivery") is False:
        risks.append(RiskFinding(
            "unserviceable_area", MEDIUM, "Delivery not verified for this PIN code",
        ))

    return RiskAnalysis(risks=risks)

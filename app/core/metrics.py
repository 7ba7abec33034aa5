"""Payment flow metrics, exposed on ``/metrics`` next to the HTTP metrics."""

from prometheus_client import Counter

PAYMENT_INTENTS_ISSUED = Counter(
    "payment_intents_issued_total",
    "Payment intents issued for appointments",
    ["provider"],
)

PAYMENT_CONFIRMATIONS = Counter(
    "payment_confirmations_total",
    "Payment confirmation answers, by final result",
    ["result", "duplicate"],
)

PAYMENT_PROCESSOR_ERRORS = Counter(
    "payment_processor_errors_total",
    "Failed calls to the payment processor",
    ["provider", "operation"],
)

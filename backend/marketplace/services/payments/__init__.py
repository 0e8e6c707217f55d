from .errors import (
    AmountMismatch,
    Forbidden,
    MalformedWebhook,
    OrderNotFound,
    OrderNotPayable,
    PaymentError,
    PaymentRecordUnavailable,
    ProviderError,
    ProviderNotConfigured,
    ReferenceConflict,
    SignatureInvalid,
    Unauthenticated,
    UnknownOrder,
    WebhookAmountMismatch,
    WebhookNotConfigured,
    WebhookRejected,
)
from .initiator import InitiationResult, PaymentInitiator
from .outcomes import Outcome, ProviderOutcome
from .reconciler import ReconcileResult, WebhookReconciler

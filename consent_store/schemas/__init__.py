from .consent import (
    ConsentHistoryRequest,
    ConsentHistoryResponse,
    ConsentPolicyRequest,
    ConsentPolicyResponse,
    ConsentReceipt,
    ConsentReceiptResponse,
    ConsentType,
    GeoLocationInput,
    SetConsentRequest,
    SetConsentResponse,
    VerifyConsentRequest,
    VerifyConsentResponse,
    WithdrawConsentRequest,
    WithdrawConsentResponse,
)

# Define the public API of this module
__all__ = [
    "ConsentHistoryRequest",
    "ConsentHistoryResponse",
    "ConsentPolicyRequest",
    "ConsentPolicyResponse",
    "ConsentReceipt",
    "ConsentReceiptResponse",
    "ConsentType",
    "GeoLocationInput",
    "SetConsentRequest",
    "SetConsentResponse",
    "VerifyConsentRequest",
    "VerifyConsentResponse",
    "WithdrawConsentRequest",
    "WithdrawConsentResponse",
]

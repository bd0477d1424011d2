"""
Resolution payloads returned to the UI and paywall.

The dictionary field names produced by ``to_dict`` are a compatibility
contract with the mobile client and must not change.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from .usage import DenyReason

PROVIDER_UNAVAILABLE_MESSAGE = (
    "I couldn't finish this insight right now. Your data is safe, and "
    "I'll have a better answer for you shortly. Please try again in a moment."
)
QUOTA_ERROR_MESSAGE = "Usage limit exceeded"
QUOTA_STATUS_CODE = 429
UNAVAILABLE_STATUS_CODE = 503


class RoutePath(Enum):
    """Path a request took through the router."""
    CACHE = "cache"
    LOCAL = "local"
    CLOUD = "cloud"
    DENIED = "denied"


@dataclass(frozen=True)
class RoutingDecision:
    """Transient record of a routing outcome; logged and counted only."""
    path: RoutePath
    confidence: float
    fingerprint: str
    degraded: bool = False


@dataclass(frozen=True)
class InsightUsage:
    """Usage summary attached to a successful resolution."""
    estimated_tokens: int
    remaining_tokens: int
    remaining_requests: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "estimatedTokens": self.estimated_tokens,
            "remainingTokens": self.remaining_tokens,
            "remainingRequests": self.remaining_requests,
        }


@dataclass(frozen=True)
class InsightResponse:
    """A resolved insight."""
    response: str
    session_id: str
    timestamp: datetime
    usage: InsightUsage
    insight_id: str
    category: str
    confidence: float
    source: RoutePath
    signature: str = ""
    fingerprint: str = ""
    degraded: bool = False

    status_code = 200

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "sessionId": self.session_id,
            "timestamp": self.timestamp.isoformat(),
            "usage": self.usage.to_dict(),
            "insightId": self.insight_id,
            "category": self.category,
            "confidence": self.confidence,
            "source": self.source.value,
            "degraded": self.degraded,
        }

    def to_record(self) -> Dict[str, Any]:
        """Full serialization for the cache snapshot."""
        data = self.to_dict()
        data["signature"] = self.signature
        data["fingerprint"] = self.fingerprint
        return data

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "InsightResponse":
        usage = data["usage"]
        return cls(
            response=data["response"],
            session_id=data["sessionId"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            usage=InsightUsage(
                estimated_tokens=int(usage["estimatedTokens"]),
                remaining_tokens=int(usage["remainingTokens"]),
                remaining_requests=int(usage["remainingRequests"]),
            ),
            insight_id=data["insightId"],
            category=data["category"],
            confidence=float(data["confidence"]),
            source=RoutePath(data["source"]),
            signature=data.get("signature", ""),
            fingerprint=data.get("fingerprint", ""),
            degraded=bool(data.get("degraded", False)),
        )


@dataclass(frozen=True)
class QuotaUsage:
    """Usage snapshot reported with a quota denial."""
    current_tokens: int
    token_limit: int
    current_requests: int
    request_limit: int
    current_conversations: int
    conversation_limit: int
    subscription_tier: str
    estimated_cost: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentTokens": self.current_tokens,
            "tokenLimit": self.token_limit,
            "currentRequests": self.current_requests,
            "requestLimit": self.request_limit,
            "currentConversations": self.current_conversations,
            "conversationLimit": self.conversation_limit,
            "subscriptionTier": self.subscription_tier,
            "estimatedCost": self.estimated_cost,
        }


@dataclass(frozen=True)
class QuotaDenial:
    """The cloud path was refused by the usage meter."""
    reason: DenyReason
    usage: QuotaUsage
    local_answer: Optional[InsightResponse] = None

    status_code = QUOTA_STATUS_CODE
    upgrade_required = True

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": False,
            "error": QUOTA_ERROR_MESSAGE,
            "reason": self.reason.value,
            "usage": self.usage.to_dict(),
            "upgradeRequired": self.upgrade_required,
        }
        if self.local_answer is not None:
            data["localAnswer"] = self.local_answer.to_dict()
        return data


@dataclass(frozen=True)
class ProviderUnavailable:
    """The cloud call failed and there was no usable local answer."""
    session_id: str
    timestamp: datetime
    message: str = PROVIDER_UNAVAILABLE_MESSAGE

    status_code = UNAVAILABLE_STATUS_CODE
    kind = "provider_unavailable"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.kind,
            "message": self.message,
            "sessionId": self.session_id,
            "timestamp": self.timestamp.isoformat(),
        }


Resolution = Union[InsightResponse, QuotaDenial, ProviderUnavailable]

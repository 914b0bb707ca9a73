"""
Protocol message shapes (ONEST / DSEP style exchange)

Request envelopes are accepted loosely (unknown context fields are kept and
echoed back); response catalog pieces are built from these models and dumped
with ``exclude_none`` so optional blocks disappear instead of rendering null.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProtocolAction(str, Enum):
    """Inbound protocol actions"""
    SEARCH = "search"
    SELECT = "select"
    INIT = "init"
    UPDATE = "update"
    CONFIRM = "confirm"
    STATUS = "status"

    @property
    def callback(self) -> str:
        """Action name stamped on the response"""
        return f"on_{self.value}"


class TransactionContext(BaseModel):
    """Per-request protocol envelope"""
    model_config = ConfigDict(extra="allow")

    domain: Optional[str] = None
    action: Optional[str] = None
    version: Optional[str] = None
    ttl: Optional[str] = None
    transaction_id: Optional[str] = None
    message_id: Optional[str] = None
    timestamp: Optional[str] = None
    bap_id: Optional[str] = None
    bap_uri: Optional[str] = None
    bpp_id: Optional[str] = None
    bpp_uri: Optional[str] = None


class ProtocolRequest(BaseModel):
    """Inbound protocol request: context plus free-form message"""
    model_config = ConfigDict(extra="allow")

    context: TransactionContext = Field(default_factory=TransactionContext)
    message: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProtocolRequest":
        """Build from a raw JSON body; non-dict parts are treated as missing"""
        data = data if isinstance(data, dict) else {}
        context = data.get("context") if isinstance(data.get("context"), dict) else {}
        message = data.get("message") if isinstance(data.get("message"), dict) else {}
        return cls(context=TransactionContext(**context), message=message)

    def context_dict(self) -> Dict[str, Any]:
        """Inbound context with unset fields dropped"""
        return self.context.model_dump(exclude_none=True)


class Descriptor(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    short_desc: Optional[str] = None
    long_desc: Optional[str] = None
    images: Optional[List[str]] = None


class TagEntry(BaseModel):
    descriptor: Descriptor
    value: str
    display: bool = True


class TagGroup(BaseModel):
    display: bool = True
    descriptor: Descriptor
    list: List[TagEntry]


class Price(BaseModel):
    currency: str
    value: str


class TimeRange(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None


class ItemTime(BaseModel):
    range: TimeRange


class CatalogItem(BaseModel):
    """A benefit rendered as a catalog item"""
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    descriptor: Descriptor
    price: Price
    time: ItemTime
    rateable: bool = False
    tags: Optional[List[TagGroup]] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

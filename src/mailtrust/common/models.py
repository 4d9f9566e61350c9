"""
Pydantic models for mailtrust entities.

These are the in-memory representations the core constructs and mutates
before handing them to the persistence layer.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

MASKED_SECRET = "****"


def utcnow() -> datetime:
    """Return the current UTC time."""
    return datetime.now(timezone.utc)


class DkimAlgorithm(str, Enum):
    """DKIM signing key algorithm."""

    RSA_2048 = "RSA_2048"
    ED25519 = "ED25519"


class DkimKeyStatus(str, Enum):
    """Lifecycle state of a DKIM key."""

    ACTIVE = "ACTIVE"
    ROTATING = "ROTATING"
    RETIRED = "RETIRED"


class CheckType(str, Enum):
    """Domain authentication check."""

    MX = "MX"
    SPF = "SPF"
    DKIM = "DKIM"
    DMARC = "DMARC"
    MTA_STS = "MTA_STS"
    NS = "NS"


class HealthStatus(str, Enum):
    """Outcome of a single domain check."""

    OK = "OK"
    WARN = "WARN"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"


class DomainStatus(str, Enum):
    """Aggregate status of a domain."""

    PENDING = "PENDING"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    ACTIVE = "ACTIVE"
    ERROR = "ERROR"


class ProviderType(str, Enum):
    """Supported DNS provider backends."""

    CLOUDFLARE = "CLOUDFLARE"
    AWS_ROUTE53 = "AWS_ROUTE53"


class MtaStsPolicyMode(str, Enum):
    """MTA-STS policy mode."""

    TESTING = "testing"
    ENFORCE = "enforce"
    NONE = "none"


class MtaStsWorkerStatus(str, Enum):
    """Deployment state of an MTA-STS edge worker."""

    PENDING = "PENDING"
    DEPLOYED = "DEPLOYED"
    ERROR = "ERROR"


class BaseEntity(BaseModel):
    """Base model for all persisted entities."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
        validate_assignment=True,
    )

    id: Optional[int] = Field(None, description="Identifier assigned by storage")

    def to_dict(self) -> dict[str, Any]:
        """Convert model to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")


class Domain(BaseEntity):
    """An email-sending domain under management."""

    name: str = Field(..., description="Fully qualified domain name")
    dns_provider_id: Optional[int] = Field(None, description="Provider publishing records")
    ns_provider_id: Optional[int] = Field(None, description="Provider hosting nameservers")
    status: DomainStatus = Field(default=DomainStatus.PENDING)
    last_health_check: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class DkimKey(BaseEntity):
    """A DKIM signing key and its lifecycle state."""

    domain_id: int
    selector: str
    algorithm: DkimAlgorithm
    encrypted_private_key: str = Field(..., description="Vault envelope, or the mask")
    public_key: str = Field(..., description="Base64 public key as published in p=")
    cname_selector: Optional[str] = Field(
        None, description="Selector this key supersedes during rotation"
    )
    status: DkimKeyStatus = Field(default=DkimKeyStatus.ACTIVE)
    created_at: datetime = Field(default_factory=utcnow)
    retired_at: Optional[datetime] = None

    def masked(self) -> "DkimKey":
        """Return a copy safe to hand out of the DKIM subsystem."""
        return self.model_copy(update={"encrypted_private_key": MASKED_SECRET})


class DomainHealthRecord(BaseEntity):
    """Latest result of one check type for one domain."""

    domain_id: int
    check_type: CheckType
    status: HealthStatus = Field(default=HealthStatus.UNKNOWN)
    message: str = ""
    last_checked: datetime = Field(default_factory=utcnow)


class DnsProviderCredential(BaseEntity):
    """A registered DNS provider account with encrypted credentials."""

    name: str
    type: ProviderType
    encrypted_credentials: str = Field(..., description="Vault envelope of a JSON map")
    created_at: datetime = Field(default_factory=utcnow)

    def masked(self) -> "DnsProviderCredential":
        """Return a copy with credentials redacted."""
        return self.model_copy(update={"encrypted_credentials": MASKED_SECRET})


class ManagedDnsRecord(BaseEntity):
    """A DNS record known to the system.

    ``managed`` records were created here and are tracked for updates and
    deletes; unmanaged ones are a read-only snapshot taken at onboarding.
    """

    domain_id: int
    record_type: str
    name: str
    value: str
    ttl: int = 3600
    priority: Optional[int] = None
    provider_record_id: Optional[str] = None
    managed: bool = False


class DetectedDkimSelector(BaseEntity):
    """A DKIM selector found in public DNS during discovery."""

    domain: str
    selector: str
    public_key_dns_value: str = ""
    algorithm: str = "rsa"
    test_mode: bool = False
    revoked: bool = False
    detected_at: datetime = Field(default_factory=utcnow)


class MtaStsWorker(BaseEntity):
    """Edge worker serving a domain's MTA-STS policy."""

    domain_id: int
    worker_name: str
    worker_id: Optional[str] = None
    kv_namespace_id: Optional[str] = None
    policy_mode: MtaStsPolicyMode = Field(default=MtaStsPolicyMode.TESTING)
    policy_version: Optional[str] = None
    status: MtaStsWorkerStatus = Field(default=MtaStsWorkerStatus.PENDING)
    deployed_at: Optional[datetime] = None

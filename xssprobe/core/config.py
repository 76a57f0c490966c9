from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, ValidationError, field_validator, Field
from typing import Optional, List, Dict
from pathlib import Path
import re
import json
from dotenv import load_dotenv

load_dotenv()

from xssprobe.core.exceptions import InvalidConfigError
from xssprobe.utils.logger import get_logger

logger = get_logger("core.config")

DOMAIN_RE = re.compile(r"^(?:\*\.)?[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)*$")
HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}


class Settings(BaseSettings):
    """
    Process-level configuration using Pydantic Settings.
    Loads from .env file and XSSPROBE_* environment variables.
    """
    APP_NAME: str = "xssprobe"
    VERSION: str = "1.0.0"
    DEBUG: bool = False

    # --- Probe transport ---
    PROBE_TIMEOUT: float = Field(default=5.0, description="Seconds before a single probe is abandoned")
    USER_AGENT: str = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"

    # --- Analysis ---
    VULNERABLE_THRESHOLD: float = 0.8
    EVIDENCE_WEIGHTS: Dict[str, float] = {
        "reflected": 0.8,
        "dom": 0.7,
        "event": 0.6,
        "data-uri": 0.5,
    }

    # --- Fingerprinting ---
    # Global/DOM markers whose presence identifies a framework
    FRAMEWORK_SIGNATURES: Dict[str, List[str]] = {
        "vue": ["__VUE__", "Vue", "v-app"],
        "react": ["__REACT_DEVTOOLS_GLOBAL_HOOK__", "React", "data-reactroot"],
        "angular": ["angular", "ng", "ng-app", "ng-version"],
        "svelte": ["__svelte"],
        "jquery": ["jQuery", "$"],
        "bootstrap": ["bootstrap"],
        "materialize": ["M", "materialize"],
    }
    SERVER_AWARE_FILTERING: bool = False

    # --- Vulnerability sink ---
    WEBHOOK_URL: Optional[str] = None
    WEBHOOK_TIMEOUT: float = 5.0

    @field_validator('VULNERABLE_THRESHOLD')
    @classmethod
    def validate_threshold(cls, v):
        """Validate the vulnerable threshold is between 0 and 1."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("VULNERABLE_THRESHOLD must be between 0.0 and 1.0")
        return v

    @field_validator('EVIDENCE_WEIGHTS')
    @classmethod
    def validate_weights(cls, v):
        """Every evidence kind needs a weight in [0, 1]."""
        missing = {"reflected", "dom", "event", "data-uri"} - set(v)
        if missing:
            raise ValueError(f"EVIDENCE_WEIGHTS missing kinds: {sorted(missing)}")
        for kind, weight in v.items():
            if not 0.0 <= weight <= 1.0:
                raise ValueError(f"EVIDENCE_WEIGHTS[{kind}] must be between 0.0 and 1.0")
        return v

    @field_validator('PROBE_TIMEOUT', 'WEBHOOK_TIMEOUT')
    @classmethod
    def validate_timeouts(cls, v, info):
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive (got {v})")
        return v

    def mask_secrets(self) -> dict:
        """Return settings with the webhook URL masked."""
        data = self.model_dump()
        url = data.get("WEBHOOK_URL")
        if url:
            data["WEBHOOK_URL"] = url[:16] + "..." if len(url) > 16 else "***"
        return data

    def log_config(self):
        """Log configuration with masked secrets (only in DEBUG mode)."""
        if not self.DEBUG:
            return
        logger.debug("Configuration loaded:")
        for key, value in self.mask_secrets().items():
            logger.debug(f"  {key}: {value}")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="XSSPROBE_",
        case_sensitive=True,
        extra="ignore"
    )


# =============================================================================
# SCAN CONFIGURATION DOCUMENT
# =============================================================================

class TrustedDomainsConfig(BaseModel):
    """Domains that are never probed, even when a scan target matches them."""
    enabled: bool = True
    domains: List[str] = Field(default_factory=list)
    include_subdomains: bool = True

    @field_validator('domains')
    @classmethod
    def normalize_domains(cls, v):
        return [d.strip().lower() for d in v if d.strip()]


class ParameterFilter(BaseModel):
    include: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)


class TargetRule(BaseModel):
    """A scan target: domain plus path, method and parameter filters."""
    domain: str
    include_subdomains: bool = True
    paths: List[str] = Field(default_factory=list)
    exclude_paths: List[str] = Field(default_factory=list)
    methods: List[str] = Field(default_factory=lambda: ["GET", "POST"])
    parameters: ParameterFilter = Field(default_factory=ParameterFilter)

    @field_validator('domain')
    @classmethod
    def normalize_domain(cls, v):
        return v.strip().lower()

    @field_validator('methods')
    @classmethod
    def normalize_methods(cls, v):
        return [m.upper() for m in v]


class ScanTargetsConfig(BaseModel):
    """The allow-list: only hosts matching an enabled target are scanned."""
    enabled: bool = True
    targets: List[TargetRule] = Field(default_factory=list)


class ScanToggles(BaseModel):
    parameters: bool = True
    hidden_inputs: bool = True
    pseudo_static: bool = True
    forms: bool = True
    links: bool = True
    dom: bool = True


class RequestLimitConfig(BaseModel):
    request_delay: float = Field(default=1.0, ge=0, description="Seconds between executions")
    max_requests_per_minute: int = Field(default=60, gt=0)
    max_concurrent_requests: int = Field(default=5, gt=0)


class CacheConfig(BaseModel):
    enabled: bool = True
    ttl: float = Field(default=300.0, gt=0, description="Seconds a cached body stays fresh")
    max_size: int = Field(default=1000, gt=0)


class AccessControlConfig(BaseModel):
    require_auth: bool = False
    allowed_methods: List[str] = Field(default_factory=lambda: ["GET", "POST"])
    max_payload_size: int = Field(default=1024 * 1024, gt=0)

    @field_validator('allowed_methods')
    @classmethod
    def normalize_methods(cls, v):
        return [m.upper() for m in v]


class RequestQueueConfig(BaseModel):
    batch_size: int = Field(default=5, gt=0)
    retry_attempts: int = Field(default=3, ge=0)


class PayloadSelectionConfig(BaseModel):
    vuln_class: str = "reflected"
    min_confidence: float = Field(default=0.5, ge=0, le=1)
    include_raw: bool = True
    encoding: bool = True
    obfuscation: bool = True
    waf_aware: bool = True


class ScanConfig(BaseModel):
    """
    Per-session configuration document.

    Loaded from JSON and frozen into a snapshot when a ScanSession starts;
    edits made afterwards only affect the next session.
    """
    trusted: TrustedDomainsConfig = Field(default_factory=TrustedDomainsConfig)
    scan_targets: ScanTargetsConfig = Field(default_factory=ScanTargetsConfig)
    scan: ScanToggles = Field(default_factory=ScanToggles)
    request_limit: RequestLimitConfig = Field(default_factory=RequestLimitConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    access_control: AccessControlConfig = Field(default_factory=AccessControlConfig)
    request_queue: RequestQueueConfig = Field(default_factory=RequestQueueConfig)
    payload_selection: PayloadSelectionConfig = Field(default_factory=PayloadSelectionConfig)

    @classmethod
    def load(cls, path) -> "ScanConfig":
        """Load and validate a JSON configuration document."""
        path = Path(path)
        try:
            config = cls.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise InvalidConfigError(
                f"Invalid scan configuration in {path}",
                errors=[err["msg"] for err in e.errors()],
                cause=e,
            )
        except (OSError, json.JSONDecodeError) as e:
            raise InvalidConfigError(f"Cannot read scan configuration {path}: {e}", cause=e)

        errors = config.validate_config()
        if errors:
            raise InvalidConfigError(f"Invalid scan configuration in {path}", errors=errors)
        logger.info(f"Loaded scan configuration from {path} ({len(config.scan_targets.targets)} targets)")
        return config

    def validate_config(self) -> List[str]:
        """Return human-readable problems with this document (empty when valid)."""
        errors = []
        if self.scan_targets.enabled and not self.scan_targets.targets:
            errors.append("scan_targets is enabled but lists no targets")
        for domain in self.trusted.domains:
            if not DOMAIN_RE.match(domain):
                errors.append(f"invalid trusted domain: {domain}")
        for index, target in enumerate(self.scan_targets.targets):
            if not target.domain:
                errors.append(f"targets[{index}]: domain is required")
            elif not DOMAIN_RE.match(target.domain):
                errors.append(f"targets[{index}]: invalid domain {target.domain}")
            for path in target.paths + target.exclude_paths:
                if not path.startswith("/"):
                    errors.append(f"targets[{index}]: path must start with '/': {path}")
            for method in target.methods:
                if method not in HTTP_METHODS:
                    errors.append(f"targets[{index}]: unknown method {method}")
        for method in self.access_control.allowed_methods:
            if method not in HTTP_METHODS:
                errors.append(f"access_control: unknown method {method}")
        return errors

    def snapshot(self) -> "ScanConfig":
        return self.model_copy(deep=True)


# Singleton Instance
settings = Settings()
settings.log_config()

"""
SealForge Infrastructure Module
Configuration, errors, results and activity logging
"""

from .errors import (
    SealForgeError,
    ConfigurationError,
    LLMError,
    LLMRateLimitError,
    EncryptionError,
    EnvelopeFormatError,
    StorageError,
    LedgerError,
    CredentialError,
    AccessDeniedError,
    QuorumError,
    ErrorCode,
    ErrorTracker,
    error_tracker,
    retry,
    register_exception_handlers,
)

from .config import (
    SealForgeConfig,
    CustodianInfo,
    NetworkConfig,
    SealConfig,
    WalrusConfig,
    LLMConfig,
    DataSourceConfig,
    PipelineConfig,
    Environment,
    SecretsManager,
    get_config,
    get_secrets,
    reload_config,
    load_deployed_config,
    save_deployed_config,
)

from .result import Outcome

from .activity_log import ActivityLog, AgentPhase, ActivityEntry

__all__ = [
    # Errors
    "SealForgeError",
    "ConfigurationError",
    "LLMError",
    "LLMRateLimitError",
    "EncryptionError",
    "EnvelopeFormatError",
    "StorageError",
    "LedgerError",
    "CredentialError",
    "AccessDeniedError",
    "QuorumError",
    "ErrorCode",
    "ErrorTracker",
    "error_tracker",
    "retry",
    "register_exception_handlers",

    # Config
    "SealForgeConfig",
    "CustodianInfo",
    "NetworkConfig",
    "SealConfig",
    "WalrusConfig",
    "LLMConfig",
    "DataSourceConfig",
    "PipelineConfig",
    "Environment",
    "SecretsManager",
    "get_config",
    "get_secrets",
    "reload_config",
    "load_deployed_config",
    "save_deployed_config",

    # Results
    "Outcome",

    # Activity
    "ActivityLog",
    "AgentPhase",
    "ActivityEntry",
]

"""
Sentry Error Monitoring Configuration
Error tracking for the SealForge agent and custodian service
"""
import os
import logging
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger("Sentry")

SENSITIVE_KEYS = (
    'private_key', 'signature', 'request_signature', 'session', 'session_vk',
    'credential', 'secret', 'seed', 'api_token', 'encrypted_share', 'sealed_share',
)
FILTERED = '[FILTERED]'


def _is_sensitive(key) -> bool:
    key = str(key).lower()
    return any(s in key for s in SENSITIVE_KEYS)


def scrub(value):
    """Replace sensitive values anywhere in a nested dict/list structure"""
    if isinstance(value, dict):
        return {k: FILTERED if _is_sensitive(k) else scrub(v) for k, v in value.items()}
    if isinstance(value, list):
        return [scrub(v) for v in value]
    return value


def filter_sensitive_data(event, hint):
    """Remove key material and credentials from Sentry events."""
    if 'request' in event and 'data' in event['request']:
        event['request']['data'] = scrub(event['request']['data'])

    if 'extra' in event:
        event['extra'] = scrub(event['extra'])

    # Exception messages can quote a credential or key verbatim
    if 'exception' in event and 'values' in event['exception']:
        for exc in event['exception']['values']:
            value = exc.get('value') or ''
            if any(s in value.lower() for s in ('private_key', 'sui_private_key', 'secret')):
                exc['value'] = '[FILTERED - sensitive data]'

    return event


def init_sentry(dsn: str = None) -> bool:
    """Initialize Sentry when a DSN is configured."""
    dsn = dsn or os.getenv("SENTRY_DSN")

    if not dsn:
        logger.info("No SENTRY_DSN found - error tracking disabled")
        return False

    environment = os.getenv("SEALFORGE_ENV", "development")
    release = os.getenv("COMMIT_SHA", "local")

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.2,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR
            ),
        ],
        before_send=filter_sensitive_data,
        send_default_pii=False,
        release=f"sealforge@{release}",
        # Custodian outages are reported through DecryptResult, not as events
        ignore_errors=[
            ConnectionRefusedError,
            TimeoutError,
        ],
    )

    logger.info(f"✓ Sentry initialized for {environment} (release: {release[:8]})")
    return True


def capture_pipeline_breadcrumb(phase: str, message: str, details: dict = None):
    """Add breadcrumb for a pipeline phase."""
    sentry_sdk.add_breadcrumb(
        category="pipeline",
        message=f"[{phase}] {message}",
        level="info",
        data=scrub(details or {})
    )


def set_agent_context(address: str, network: str = "testnet"):
    """Tag events with the agent's (truncated) Sui address."""
    if not address:
        return
    sentry_sdk.set_context("agent", {
        "address": address[:10] + "...",
        "network": network,
    })

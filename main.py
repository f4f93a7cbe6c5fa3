"""
Main entry point for the Bot Gatekeeper.

Loads the policy and gatekeeper settings, builds the pipeline and starts
the FastAPI server.
"""

import os
import signal

from dotenv import load_dotenv

load_dotenv()

from common.logging import configure_logging, get_logger
from gatekeeper import ConfigError, PolicyStore, load_gatekeeper_settings
from gateway import GatewayGatekeeper, create_app

log_level = os.getenv("LOG_LEVEL", "INFO")
configure_logging(log_level=log_level, json_output=os.getenv("LOG_FORMAT", "json") == "json")
logger = get_logger(__name__)


def install_reload_handler(store: PolicyStore) -> None:
    """Reload the policy on SIGHUP; a bad policy keeps the current one active."""
    if not hasattr(signal, "SIGHUP"):
        return

    def _reload(signum, frame):
        try:
            store.reload()
        except (ConfigError, FileNotFoundError):
            logger.warning("policy_reload_rejected", active_version=store.version)

    signal.signal(signal.SIGHUP, _reload)


def create_gateway_app(config_path: str = None):
    """
    Create and configure the Gateway application.

    Args:
        config_path: Path to configuration YAML file (default: $GATEKEEPER_CONFIG
            or config/default.yaml)

    Returns:
        Configured FastAPI app

    Raises:
        ConfigError: If the policy or gatekeeper settings are invalid
    """
    config_path = config_path or os.getenv("GATEKEEPER_CONFIG", "config/default.yaml")

    logger.info("loading_policy", config_path=config_path)
    store = PolicyStore(config_path)
    settings = load_gatekeeper_settings(config_path)

    gatekeeper = GatewayGatekeeper.from_settings(store, settings)
    app = create_app(gatekeeper, enable_cors=True)

    @app.on_event("shutdown")
    def close_gatekeeper():
        gatekeeper.close()

    logger.info(
        "gateway_initialized",
        policy_version=store.version,
        rules=len(store.rules),
        default_action=store.default_action().value,
        verifier=settings.verifier,
    )
    return app, store


if __name__ == "__main__":
    import uvicorn

    app, store = create_gateway_app()
    install_reload_handler(store)

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    logger.info("starting_gateway_server", host=host, port=port)
    uvicorn.run(app, host=host, port=port)

"""Shared Kafka security configuration builder."""

import ssl

from config.config import StockFlowConfig


def build_kafka_security_config(config: StockFlowConfig) -> dict:
    """Build aiokafka security kwargs from StockFlowConfig.

    Handles SSL context creation and SASL PLAIN / SCRAM credentials.
    Returns an empty dict for PLAINTEXT connections.
    """
    if config.security_protocol == "PLAINTEXT":
        return {}

    security_config = {"security_protocol": config.security_protocol}

    if "SSL" in config.security_protocol:
        security_config["ssl_context"] = ssl.create_default_context()

    if config.security_protocol.startswith("SASL"):
        security_config["sasl_mechanism"] = config.sasl_mechanism
        security_config["sasl_plain_username"] = config.sasl_plain_username
        security_config["sasl_plain_password"] = config.sasl_plain_password

    return security_config

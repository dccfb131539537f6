"""Worker ID generation using coolname for unique, memorable identifiers."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "") -> str:
    """Generate a unique, memorable worker ID such as ``ingest-AAPL-swift-blue-falcon``.

    Used as the Kafka ``client_id`` suffix so broker-side logs can be traced
    back to a single process.
    """
    slug = generate_slug(3)
    return f"{prefix}-{slug}" if prefix else slug

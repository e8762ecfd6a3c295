"""Configuration settings for the library inventory services."""

import os
import socket


def get_postgres_uri():
    """Get PostgreSQL connection URI from environment variables."""
    host = os.environ.get("DB_HOST", "localhost")
    port = os.environ.get("DB_PORT", 5433 if host == "localhost" else 5432)
    password = os.environ.get("DB_PASSWORD", "library_pass")
    user = os.environ.get("DB_USER", "library_user")
    db_name = os.environ.get("DB_NAME", "library_db")
    return f"postgresql://{user}:{password}@{host}:{port}/{db_name}"


def get_redis_host_and_port():
    """Get Redis connection details from environment variables."""
    host = os.environ.get("REDIS_HOST", "localhost")
    port = int(os.environ.get("REDIS_PORT", 6379))
    return dict(host=host, port=port)


def get_redis_url():
    """Get Redis URL from environment variables."""
    redis_config = get_redis_host_and_port()
    return f"redis://{redis_config['host']}:{redis_config['port']}"


def get_book_status_stream():
    """Name of the Redis Stream carrying book availability events."""
    return os.environ.get("BOOK_STATUS_STREAM", "book-status-events")


def get_consumer_config():
    """Get consumer group settings for the wishlist notification consumer."""
    return dict(
        group=os.environ.get("CONSUMER_GROUP", "wishlist-notification-group"),
        consumer_name=os.environ.get("CONSUMER_NAME", socket.gethostname()),
        block_ms=int(os.environ.get("CONSUMER_BLOCK_MS", 1000)),
        batch_size=int(os.environ.get("CONSUMER_BATCH_SIZE", 10)),
        claim_min_idle_ms=int(os.environ.get("CONSUMER_CLAIM_MIN_IDLE_MS", 60000)),
    )


def get_wishlist_source():
    """Either 'database' or 'placeholder'."""
    return os.environ.get("WISHLIST_SOURCE", "database").lower()


def get_log_level():
    return os.environ.get("LOG_LEVEL", "INFO").upper()


def get_api_host_and_port():
    """Bind address for the books API server."""
    host = os.environ.get("API_HOST", "0.0.0.0")
    port = int(os.environ.get("API_PORT", 8000))
    return dict(host=host, port=port)

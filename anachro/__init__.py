"""A transport-agnostic publish/subscribe protocol: wire format, client and broker."""

__version__ = "0.1.0"
__all__ = ["client", "client_io", "cobs_buf", "groundhog", "icd", "server", "table", "wire"]
"""Random hex identifiers for rooms and transfers."""
import logging
import random
import secrets

logger = logging.getLogger(__name__)

ROOM_ID_BYTES = 4
TRANSFER_ID_BYTES = 16


def _random_bytes(byte_length: int) -> bytes:
    try:
        return secrets.token_bytes(byte_length)
    except NotImplementedError:
        # os.urandom has no entropy source on this platform
        logger.warning("No strong randomness source; falling back to random.getrandbits")
        return bytes(random.getrandbits(8) for _ in range(byte_length))


def generate_hex_id(byte_length: int = 16) -> str:
    """Return *byte_length* random bytes as lowercase hex."""
    return _random_bytes(byte_length).hex()


def generate_room_id() -> str:
    return generate_hex_id(ROOM_ID_BYTES)


def generate_transfer_id() -> str:
    return generate_hex_id(TRANSFER_ID_BYTES)

import secrets
import string

from constants import ID_LENGTH

ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_id(length: int = ID_LENGTH) -> str:
    """Opaque random token used for room and peer ids."""
    return ''.join(secrets.choice(ID_ALPHABET) for _ in range(length))

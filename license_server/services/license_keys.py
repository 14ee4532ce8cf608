import re
import secrets
import string

LICENSE_KEY_ALPHABET = string.ascii_uppercase + string.digits
LICENSE_KEY_GROUPS = 4
LICENSE_KEY_GROUP_LENGTH = 4

LICENSE_KEY_PATTERN = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$")


def generate_license_key() -> str:
    """
    Random key like AB3D-9XQ1-77ZK-M0PL.

    Uniqueness is left to the licenses.license_key constraint; 36^16 keys make a
    collision unlikely enough that the caller only retries when one is observed.
    """
    return "-".join(
        "".join(secrets.choice(LICENSE_KEY_ALPHABET) for _ in range(LICENSE_KEY_GROUP_LENGTH))
        for _ in range(LICENSE_KEY_GROUPS)
    )


def is_well_formed(license_key: str) -> bool:
    return bool(LICENSE_KEY_PATTERN.match(license_key or ""))

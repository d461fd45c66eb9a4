"""
Generation des codes et secrets / Code and secret generation.
Une seule source aleatoire cryptographique pour tout le processus.
A single process-wide cryptographic random source.
"""

import base64
import random

CODE_MIN = 100000
CODE_MAX = 999999

system_random = random.SystemRandom()


def generate_pairing_code(rng: random.Random = system_random) -> str:
    """Code a 6 chiffres, uniforme sur 100000-999999 / 6-digit code, uniform over 100000-999999."""
    return str(rng.randint(CODE_MIN, CODE_MAX))


def generate_secret_key(rng: random.Random = system_random) -> str:
    """Secret de 128 bits en hexadecimal / 128-bit secret as 32 hex chars."""
    return f"{rng.getrandbits(128):032x}"


def legacy_device_url(device_name: str, classroom: str) -> str:
    """URL historique : base64("{nom}_{SALLE}") / Legacy URL: base64("{name}_{CLASSROOM}")."""
    source = f"{device_name}_{classroom.upper()}"
    return base64.b64encode(source.encode("utf-8")).decode("ascii")

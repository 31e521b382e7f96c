"""Readers for relay settings files: plain dotenv or SOPS-encrypted dotenv."""

import subprocess
from io import StringIO
from pathlib import Path

from dotenv import dotenv_values


def decrypt_sops(encrypted_path: str | Path) -> str:
    """Return the plaintext of a SOPS-encrypted file.

    Raises:
        FileNotFoundError: If the encrypted file does not exist.
        subprocess.CalledProcessError: If SOPS decryption fails.
    """
    path = Path(encrypted_path)
    if not path.exists():
        raise FileNotFoundError(f"Encrypted settings file not found: {path}")

    result = subprocess.run(
        ["sops", "--decrypt", str(path)],
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout


def read_env_file(path: str | Path, *, encrypted: bool = False) -> dict[str, str | None]:
    """Parse a dotenv file into a dict, decrypting it with SOPS first if asked.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    if encrypted:
        return dict(dotenv_values(stream=StringIO(decrypt_sops(path))))

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")
    return dict(dotenv_values(path))

import logging
import subprocess

from healthlake.config import settings
from healthlake.errors import DecodeError

logger = logging.getLogger(__name__)


def decode_file(path, binary: str = None) -> bytes:
    """Decompress a .hae archive (LZFSE) with the external ``lzfse`` tool."""
    binary = binary or settings.LZFSE_BINARY
    try:
        proc = subprocess.run(
            [binary, "-decode", "-i", str(path)],
            capture_output=True,
            check=False,
        )
    except FileNotFoundError:
        raise DecodeError(f"lzfse decoder not found: {binary}")
    except OSError as e:
        raise DecodeError(f"lzfse decoder failed to start: {e}")

    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", "replace").strip()
        raise DecodeError(f"lzfse decode {path}: exit {proc.returncode}: {stderr}")
    if not proc.stdout:
        raise DecodeError(f"lzfse decode {path}: empty output")
    return proc.stdout

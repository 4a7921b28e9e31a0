"""
Proof of work for state blocks.

Work is an 8-byte nonce. It is valid for a root (the previous block hash,
or the account public key for an account's first block) when

    int.from_bytes(blake2b(work_le || root, digest_size=8), "little") >= difficulty
"""

import hashlib
from typing import Protocol

import httpx
import structlog

from .errors import WorkGenerationFailed

logger = structlog.get_logger()

DEFAULT_DIFFICULTY = "fffffff800000000"


class WorkProvider(Protocol):
    """Anything that can produce work for a root."""

    def generate_work(self, root: str) -> str:
        ...


def work_value(root: str, work: str) -> int:
    """Compute the difficulty value a work nonce achieves for a root."""
    work_bytes = bytes.fromhex(work)[::-1]  # hex is big-endian, hashed little-endian
    digest = hashlib.blake2b(work_bytes + bytes.fromhex(root), digest_size=8).digest()
    return int.from_bytes(digest, "little")


def validate_work(root: str, work: str, difficulty: str = DEFAULT_DIFFICULTY) -> bool:
    """Check a work nonce against a difficulty threshold."""
    if len(work) != 16:
        return False
    try:
        return work_value(root, work) >= int(difficulty, 16)
    except ValueError:
        return False


class RemoteWorkProvider:
    """
    Client for a work server (nano-work-server or a node with work enabled).

    Blocking, no retry: any failure is surfaced as WorkGenerationFailed.
    """

    def __init__(
        self,
        url: str = "http://127.0.0.1:7000",
        difficulty: str = DEFAULT_DIFFICULTY,
        timeout: float = 120.0,
    ):
        self.url = url
        self.difficulty = difficulty
        self.client = httpx.Client(timeout=timeout)

    def generate_work(self, root: str) -> str:
        payload = {"action": "work_generate", "hash": root, "difficulty": self.difficulty}

        try:
            response = self.client.post(self.url, json=payload)
            response.raise_for_status()
            result = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("work_request_failed", root=root, error=str(e))
            raise WorkGenerationFailed(root, str(e)) from e

        if result.get("error"):
            raise WorkGenerationFailed(root, str(result["error"]))

        work = result.get("work")
        if not work:
            raise WorkGenerationFailed(root, "response has no work")

        if not validate_work(root, work, self.difficulty):
            raise WorkGenerationFailed(root, f"work {work} below difficulty {self.difficulty}")

        logger.debug("work_generated", root=root, work=work)
        return work

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

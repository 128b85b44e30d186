"""Content hashing of replica files."""

import logging

from ..utils import DEFAULT_CHUNK_SIZE, DEFAULT_HASH_ALGORITHM, calculate_content_hash
from .replica import Replica, ReplicaSide

logger = logging.getLogger(__name__)


class ContentHasher:
    """Hashes files on either side of a sync pair by streaming their content."""

    def __init__(
        self,
        local: Replica,
        remote: Replica,
        algorithm: str = DEFAULT_HASH_ALGORITHM,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.replicas = {ReplicaSide.LOCAL: local, ReplicaSide.REMOTE: remote}
        self.algorithm = algorithm
        self.chunk_size = chunk_size
        self.hash_count = 0

    def hash(self, side: ReplicaSide, key: str) -> str:
        """Return the hex digest of key on the given side.

        Raises:
            ReplicaNotFoundError: If the file disappeared since it was listed
        """
        with self.replicas[side].open_read(key) as stream:
            digest = calculate_content_hash(stream, self.chunk_size, self.algorithm)
        self.hash_count += 1
        logger.debug(f"Hashed {side.value}:{key} -> {digest[:12]}")
        return digest

# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

import base64
from hashlib import sha256
from typing import Callable

LEAF_HASH_PREFIX = b"\x00"

LeafHasher = Callable[[bytes], bytes]


def hash_leaf(leaf: bytes) -> bytes:
    """
    RFC 6962 leaf hash: SHA-256 over the leaf input, domain separated from
    interior nodes by a 0x00 prefix.
    """
    return sha256(LEAF_HASH_PREFIX + leaf).digest()


def encode_hash(digest: bytes) -> str:
    return base64.b64encode(digest).decode()

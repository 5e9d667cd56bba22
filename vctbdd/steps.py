# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import re
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import requests
from loguru import logger as LOG  # type: ignore

from vctbdd.clients import (
    DEFAULT_REQUEST_TIMEOUT_SEC,
    LeafEntry,
    SignedTreeHead,
    VCTClient,
)
from vctbdd.fixtures import FixtureSet, default_fixtures
from vctbdd.hasher import LeafHasher, encode_hash, hash_leaf
from vctbdd.retry import DEFAULT_POLICY, ConditionNotMet, RetryPolicy, retry


@dataclass
class HarnessState:
    #: Tree head observed when the scenario connected to the log
    sth: Optional[SignedTreeHead] = None
    #: Entries returned by the last successful entries check
    last_entries: List[LeafEntry] = field(default_factory=list)


INTEGER_REGEX = re.compile(r"-?[0-9]+")


def parse_int(value: str, what: str) -> int:
    # Plain decimal only, int() would also take "+1", "1_0" and " 2 "
    if not isinstance(value, str) or INTEGER_REGEX.fullmatch(value) is None:
        raise ValueError(f"parse {what}: {value!r} is not an integer")
    return int(value)


def check_not_behind(sth: SignedTreeHead, baseline: SignedTreeHead):
    # A lagging replica may serve an older tree head than the baseline
    if sth.tree_size < baseline.tree_size:
        raise ConditionNotMet(
            f"tree size {sth.tree_size} is behind baseline {baseline.tree_size}"
        )


class Steps:
    """
    Scenario steps run against a verifiable credential transparency log.

    Steps which observe the log poll it according to ``policy``, since the
    log merges submitted entries into its tree asynchronously.

    :param FixtureSet fixtures: Credentials that can be submitted by name (optional).
    :param hasher: Function computing the Merkle leaf hash of a leaf input.
    :param RetryPolicy policy: Polling policy of the observing steps.
    :param float timeout: Maximum time (secs) to wait for each log response.
    :param str ca: Path to a CA bundle used to verify the log TLS certificate (optional).
    """

    def __init__(
        self,
        fixtures: Optional[FixtureSet] = None,
        hasher: LeafHasher = hash_leaf,
        policy: RetryPolicy = DEFAULT_POLICY,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SEC,
        ca: Optional[str] = None,
        client_factory: Callable[..., VCTClient] = VCTClient,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.fixtures = fixtures
        self.hasher = hasher
        self.policy = policy
        self.timeout = timeout
        self.ca = ca
        self.client_factory = client_factory
        self.sleep = sleep
        self.session = requests.Session()
        self.vct: Optional[VCTClient] = None
        self.state = HarnessState()

    def register_steps(self, registry):
        registry.step(r'VCT agent is running on "([^"]*)"$', self.set_vct_client)
        registry.step(r'Add verifiable credential "([^"]*)" to Log$', self.add_vc)
        registry.step(
            r'Retrieve latest signed tree head and check that tree_size is "([^"]*)"$',
            self.get_sth,
        )
        registry.step(
            r"Retrieve merkle consistency proof between signed tree heads$",
            self.get_sth_consistency,
        )
        registry.step(
            r'Retrieve entries from log and check that len is "([^"]*)"$',
            self.get_entries,
        )
        registry.step(
            r'Retrieve merkle audit proof from log by leaf hash for entry "([^"]*)"$',
            self.get_proof_by_hash,
        )

    def _poll(self, fn, description):
        return retry(fn, self.policy, sleep=self.sleep, description=description)

    def _client(self) -> VCTClient:
        if self.vct is None:
            raise RuntimeError("No log client, the scenario must connect to a VCT agent first")
        return self.vct

    def _baseline(self) -> SignedTreeHead:
        self._client()
        if self.state.sth is None:
            raise RuntimeError("No baseline tree head, the scenario must connect to a VCT agent first")
        return self.state.sth

    def close(self):
        self.session.close()

    def set_vct_client(self, endpoint: str):
        client = self.client_factory(
            endpoint, session=self.session, timeout=self.timeout, ca=self.ca
        )
        sth = client.get_sth()
        self.vct = client
        self.state.sth = sth
        LOG.info(f"Baseline tree size is {sth.tree_size}")

    def add_vc(self, file: str):
        if self.fixtures is None:
            self.fixtures = default_fixtures()
        src = self.fixtures.read(file)
        self._client().add_vc(src)

    def get_sth(self, tree_size: str):
        expected = parse_int(tree_size, "tree size")
        baseline = self._baseline()
        client = self._client()

        def check():
            resp = client.get_sth()
            delta = resp.tree_size - baseline.tree_size
            if delta != expected:
                raise ConditionNotMet(f"expected tree size {expected}, got {delta}")

        self._poll(check, "tree size")

    def get_sth_consistency(self):
        baseline = self._baseline()
        client = self._client()

        def check():
            resp = client.get_sth()
            check_not_behind(resp, baseline)
            proof = client.get_sth_consistency(baseline.tree_size, resp.tree_size)
            n = len(proof.consistency)
            if baseline.tree_size != 0 and n < 1:
                raise ConditionNotMet(f"no hash, expected greater than zero, got {n}")
            if baseline.tree_size == 0 and n != 0:
                raise ConditionNotMet(f"empty hash expected, got {n}")

        self._poll(check, "consistency proof")

    def get_entries(self, lengths: str):
        baseline = self._baseline()
        client = self._client()

        def check():
            resp = client.get_sth()
            check_not_behind(resp, baseline)
            entries = client.get_entries(baseline.tree_size, resp.tree_size).entries
            entries_len = str(len(entries))
            if entries_len != lengths:
                raise ConditionNotMet(f"no entries, expected {lengths}, got {entries_len}")
            return entries

        self.state.last_entries = self._poll(check, "entries")

    def get_proof_by_hash(self, idx: str):
        i = parse_int(idx, "index")
        client = self._client()
        entries = self.state.last_entries
        if not 1 <= i <= len(entries):
            raise IndexError(
                f"entry {i} is out of range, last entries check returned {len(entries)} entries"
            )
        leaf_hash = encode_hash(self.hasher(entries[i - 1].leaf_input))

        def check():
            resp = client.get_sth()
            proof = client.get_proof_by_hash(leaf_hash, resp.tree_size)
            n = len(proof.audit_path)
            if n < 1:
                raise ConditionNotMet(f"no audit, expected greater than zero, got {n}")

        self._poll(check, f"audit proof for entry {i}")

# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

import os
import sys

import pytest

# Make the package importable without installing it
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from vctbdd.clients import (  # noqa: E402
    AddVCResponse,
    AuditProof,
    ConsistencyProof,
    EntriesResponse,
    LeafEntry,
    SignedTreeHead,
    VCTClientException,
)
from vctbdd.fixtures import FixtureSet
from vctbdd.hasher import encode_hash, hash_leaf
from vctbdd.retry import RetryPolicy
from vctbdd.steps import Steps


class FakeLog:
    """
    In-memory stand-in for a log agent. Submitted credentials only show up in
    the tree once ``merge_after`` tree heads have been served.
    """

    def __init__(self, leaves=(), merge_after=0):
        self.leaves = list(leaves)
        self.pending = []
        self.submitted = []
        self.merge_after = merge_after
        self.sth_calls = 0
        self.sth_failures = 0
        self.consistency_len = None
        self.audit_path_len = 1
        self.clients = []

    def factory(self, endpoint, **kwargs):
        client = FakeVCT(self, endpoint, kwargs)
        self.clients.append(client)
        return client


class FakeVCT:
    def __init__(self, log, endpoint, kwargs):
        self.log = log
        self.endpoint = endpoint
        self.kwargs = kwargs

    def get_sth(self):
        log = self.log
        log.sth_calls += 1
        if log.sth_failures > 0:
            log.sth_failures -= 1
            raise VCTClientException("log unavailable", status_code=503)
        if log.pending and log.sth_calls > log.merge_after:
            log.leaves.extend(log.pending)
            log.pending = []
        return SignedTreeHead(len(log.leaves), 0, b"root", b"sig")

    def add_vc(self, vc):
        self.log.pending.append(vc)
        self.log.submitted.append(vc)
        return AddVCResponse(0, b"id", 0, "", b"sig")

    def get_sth_consistency(self, first, second):
        n = self.log.consistency_len
        if n is None:
            n = 0 if first == 0 or first == second else 1
        return ConsistencyProof([b"h"] * n)

    def get_entries(self, start, end):
        return EntriesResponse([LeafEntry(l, b"") for l in self.log.leaves[start:end]])

    def get_proof_by_hash(self, leaf_hash, tree_size):
        hashes = [encode_hash(hash_leaf(l)) for l in self.log.leaves[:tree_size]]
        if leaf_hash not in hashes:
            raise VCTClientException("leaf not found", status_code=404)
        return AuditProof(hashes.index(leaf_hash), [b"p"] * self.log.audit_path_len)


@pytest.fixture
def fake_log():
    return FakeLog()


@pytest.fixture
def fixtures():
    return FixtureSet(
        {
            "vc1.json": b'{"id": "urn:vc:1"}',
            "vc2.json": b'{"id": "urn:vc:2"}',
        }
    )


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_steps(fake_log, fixtures, sleeps):
    def make(**kwargs):
        kwargs.setdefault("fixtures", fixtures)
        kwargs.setdefault("client_factory", fake_log.factory)
        kwargs.setdefault("sleep", sleeps.append)
        return Steps(**kwargs)

    return make


@pytest.fixture
def short_policy():
    return RetryPolicy(interval=0.5, max_attempts=3)

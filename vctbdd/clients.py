# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import base64
import json
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Union

import requests
from loguru import logger as LOG  # type: ignore


loguru_tag_regex = re.compile(r"\\?</?((?:[fb]g\s)?[^<>\s]*)>")


def escape_loguru_tags(s):
    return loguru_tag_regex.sub(lambda match: f"\\{match[0]}", s)


def truncate(string: str, max_len: int = 256):
    if len(string) > max_len:
        return f"{string[: max_len]} + {len(string) - max_len} chars"
    else:
        return string


BASE_PATH = "/v1"
ADD_VC_PATH = f"{BASE_PATH}/add-vc"
GET_STH_PATH = f"{BASE_PATH}/get-sth"
GET_STH_CONSISTENCY_PATH = f"{BASE_PATH}/get-sth-consistency"
GET_PROOF_BY_HASH_PATH = f"{BASE_PATH}/get-proof-by-hash"
GET_ENTRIES_PATH = f"{BASE_PATH}/get-entries"
GET_ENTRY_AND_PROOF_PATH = f"{BASE_PATH}/get-entry-and-proof"
GET_ISSUERS_PATH = f"{BASE_PATH}/get-issuers"
WEBFINGER_PATH = "/.well-known/webfinger"

DEFAULT_REQUEST_TIMEOUT_SEC = 60

CONTENT_TYPE_JSON = "application/json"


class VCTConnectionException(Exception):
    """
    Exception raised if a :py:class:`vctbdd.clients.VCTClient` instance cannot
    reach the log endpoint.
    """


class VCTClientException(Exception):
    """
    Exception raised when the log answers with an error status or a body that
    cannot be decoded.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super(VCTClientException, self).__init__(message)
        self.status_code = status_code
        self.body = body


def b64(value: Optional[str]) -> bytes:
    if not value:
        return b""
    return base64.b64decode(value)


@dataclass
class Request:
    #: Resource path
    path: str
    #: HTTP verb
    http_verb: str
    #: Query string parameters
    params: Optional[dict] = None
    #: Body of request
    body: Optional[bytes] = None

    def __str__(self):
        string = f"<cyan>{self.http_verb}</> <green>{self.path}</>"
        if self.params:
            string += f" {self.params}"
        if self.body is not None:
            string += f" {escape_loguru_tags(truncate(repr(self.body)))}"
        return string


@dataclass
class SignedTreeHead:
    tree_size: int
    timestamp: int
    sha256_root_hash: bytes
    tree_head_signature: bytes

    @staticmethod
    def from_json(j: dict):
        return SignedTreeHead(
            tree_size=int(j["tree_size"]),
            timestamp=int(j.get("timestamp", 0)),
            sha256_root_hash=b64(j.get("sha256_root_hash")),
            tree_head_signature=b64(j.get("tree_head_signature")),
        )


@dataclass
class AddVCResponse:
    svct_version: int
    id: bytes
    timestamp: int
    extensions: str
    signature: bytes

    @staticmethod
    def from_json(j: dict):
        return AddVCResponse(
            svct_version=int(j.get("svct_version", 0)),
            id=b64(j.get("id")),
            timestamp=int(j.get("timestamp", 0)),
            extensions=j.get("extensions", ""),
            signature=b64(j.get("signature")),
        )


@dataclass
class ConsistencyProof:
    consistency: List[bytes]

    @staticmethod
    def from_json(j: dict):
        return ConsistencyProof([b64(h) for h in j.get("consistency") or []])


@dataclass
class AuditProof:
    leaf_index: int
    audit_path: List[bytes]

    @staticmethod
    def from_json(j: dict):
        return AuditProof(
            leaf_index=int(j.get("leaf_index", 0)),
            audit_path=[b64(h) for h in j.get("audit_path") or []],
        )


@dataclass
class LeafEntry:
    leaf_input: bytes
    extra_data: bytes

    @staticmethod
    def from_json(j: dict):
        return LeafEntry(b64(j.get("leaf_input")), b64(j.get("extra_data")))


@dataclass
class EntriesResponse:
    entries: List[LeafEntry]

    @staticmethod
    def from_json(j: dict):
        return EntriesResponse([LeafEntry.from_json(e) for e in j.get("entries") or []])


@dataclass
class EntryAndProof:
    leaf_input: bytes
    extra_data: bytes
    audit_path: List[bytes]

    @staticmethod
    def from_json(j: dict):
        return EntryAndProof(
            leaf_input=b64(j.get("leaf_input")),
            extra_data=b64(j.get("extra_data")),
            audit_path=[b64(h) for h in j.get("audit_path") or []],
        )


class VCTClient:
    """
    Client used to issue requests to a verifiable credential transparency log.

    This is a wrapper around a Python Requests session, decoding each log
    response into the matching dataclass.

    :param str endpoint: Base URL of the log, e.g. ``http://localhost:5678``.
    :param requests.Session session: Session to send requests through (optional).
    :param int timeout: Maximum time (secs) to wait for each response before giving up.
    :param str ca: Path to a CA bundle used to verify the log TLS certificate (optional).

    A :py:exc:`VCTConnectionException` exception is raised if the endpoint cannot be reached.
    """

    def __init__(
        self,
        endpoint: str,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SEC,
        ca: Optional[str] = None,
    ):
        if not endpoint.startswith(("http://", "https://")):
            raise ValueError(f"Endpoint '{endpoint}' is invalid, must be an http(s) URL")
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if ca is not None:
            self.session.verify = ca
        self.name = f"[{self.endpoint}]"

    def _call(
        self,
        path: str,
        http_verb: str = "GET",
        params: Optional[dict] = None,
        body: Optional[bytes] = None,
    ) -> Any:
        r = Request(path, http_verb, params, body)
        LOG.opt(colors=True).info(f"{self.name} {r}")

        headers = {"content-type": CONTENT_TYPE_JSON} if body is not None else {}
        try:
            response = self.session.request(
                http_verb,
                url=f"{self.endpoint}{path}",
                params=params,
                data=body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise TimeoutError(f"{http_verb} {path} timed out after {self.timeout}s") from exc
        except requests.exceptions.ConnectionError as exc:
            raise VCTConnectionException(f"Cannot reach {self.endpoint}") from exc

        status_color = "red" if response.status_code // 100 in (4, 5) else "green"
        body_s = escape_loguru_tags(truncate(response.text))
        # Body can't end with a \, or it will escape the loguru closing tag
        if len(body_s) > 0 and body_s[-1] == "\\":
            body_s += " "
        LOG.opt(colors=True).info(
            f"<{status_color}>{response.status_code}</> <yellow>{body_s}</>"
        )

        if response.status_code // 100 != 2:
            raise VCTClientException(
                f"{http_verb} {path} returned HTTP status {response.status_code}: {truncate(response.text)}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise VCTClientException(
                f"{http_verb} {path} returned a body that is not JSON",
                status_code=response.status_code,
                body=response.text,
            ) from exc

    def _decode(self, decoder, payload):
        try:
            return decoder(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise VCTClientException(
                f"Unexpected response from log: {truncate(json.dumps(payload))}"
            ) from exc

    def get_sth(self) -> SignedTreeHead:
        """
        Retrieves the latest signed tree head.

        :return: :py:class:`vctbdd.clients.SignedTreeHead`
        """
        return self._decode(SignedTreeHead.from_json, self._call(GET_STH_PATH))

    def add_vc(self, vc: Union[bytes, str]) -> AddVCResponse:
        """
        Submits a verifiable credential to the log.

        :param vc: Serialised credential.
        :type vc: bytes or str

        :return: :py:class:`vctbdd.clients.AddVCResponse`
        """
        if isinstance(vc, str):
            vc = vc.encode()
        return self._decode(
            AddVCResponse.from_json, self._call(ADD_VC_PATH, "POST", body=vc)
        )

    def get_sth_consistency(self, first: int, second: int) -> ConsistencyProof:
        """
        Retrieves the Merkle consistency proof between two tree sizes.

        :return: :py:class:`vctbdd.clients.ConsistencyProof`
        """
        if first < 0 or first > second:
            raise ValueError(f"Invalid tree sizes for consistency proof: {first}, {second}")
        return self._decode(
            ConsistencyProof.from_json,
            self._call(GET_STH_CONSISTENCY_PATH, params={"first": first, "second": second}),
        )

    def get_entries(self, start: int, end: int) -> EntriesResponse:
        """
        Retrieves the leaf entries between ``start`` and ``end``.

        :return: :py:class:`vctbdd.clients.EntriesResponse`
        """
        if start < 0 or start > end:
            raise ValueError(f"Invalid entries range: {start}, {end}")
        return self._decode(
            EntriesResponse.from_json,
            self._call(GET_ENTRIES_PATH, params={"start": start, "end": end}),
        )

    def get_proof_by_hash(self, leaf_hash: str, tree_size: int) -> AuditProof:
        """
        Retrieves the Merkle audit proof for a leaf, given its base64 leaf hash.

        :return: :py:class:`vctbdd.clients.AuditProof`
        """
        return self._decode(
            AuditProof.from_json,
            self._call(
                GET_PROOF_BY_HASH_PATH,
                params={"hash": leaf_hash, "tree_size": tree_size},
            ),
        )

    def get_entry_and_proof(self, leaf_index: int, tree_size: int) -> EntryAndProof:
        return self._decode(
            EntryAndProof.from_json,
            self._call(
                GET_ENTRY_AND_PROOF_PATH,
                params={"leaf_index": leaf_index, "tree_size": tree_size},
            ),
        )

    def get_issuers(self) -> List[str]:
        return self._decode(list, self._call(GET_ISSUERS_PATH))

    def webfinger(self) -> dict:
        return self._decode(dict, self._call(WEBFINGER_PATH))

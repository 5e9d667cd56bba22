# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import os
from collections.abc import Mapping
from types import MappingProxyType
from typing import Dict, Iterator

from loguru import logger as LOG  # type: ignore

DEFAULT_FIXTURES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "testdata")
FIXTURE_EXTENSION = ".json"


class FixtureNotFound(KeyError):
    pass


class FixtureSet(Mapping):
    """
    Read-only set of test fixtures, keyed by file name.
    """

    def __init__(self, fixtures: Dict[str, bytes]):
        self._fixtures = MappingProxyType(dict(fixtures))

    @staticmethod
    def from_directory(path: str) -> "FixtureSet":
        if not os.path.isdir(path):
            raise NotADirectoryError(path)
        fixtures = {}
        for name in sorted(os.listdir(path)):
            file_path = os.path.join(path, name)
            if name.endswith(FIXTURE_EXTENSION) and os.path.isfile(file_path):
                with open(file_path, "rb") as f:
                    fixtures[name] = f.read()
        LOG.debug(f"Loaded {len(fixtures)} fixtures from {path}")
        return FixtureSet(fixtures)

    def read(self, name: str) -> bytes:
        # Same lookup rules as a file read relative to the fixture directory,
        # but nothing outside of it resolves
        cleaned = os.path.normpath(name).replace(os.sep, "/")
        try:
            return self._fixtures[cleaned]
        except KeyError as e:
            raise FixtureNotFound(f"No fixture named {name!r}") from e

    def __getitem__(self, name: str) -> bytes:
        return self.read(name)

    def __iter__(self) -> Iterator[str]:
        return iter(self._fixtures)

    def __len__(self) -> int:
        return len(self._fixtures)


_default = None


def default_fixtures() -> FixtureSet:
    global _default
    if _default is None:
        _default = FixtureSet.from_directory(DEFAULT_FIXTURES_DIR)
    return _default

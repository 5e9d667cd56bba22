# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
"""Runs the VCT log feature scenarios against a running log agent"""
import argparse
import functools
import os
import sys

from loguru import logger as LOG  # type: ignore

from vctbdd.clients import DEFAULT_REQUEST_TIMEOUT_SEC
from vctbdd.fixtures import DEFAULT_FIXTURES_DIR, FixtureSet
from vctbdd.retry import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_INTERVAL_SEC, RetryPolicy
from vctbdd.scenario import Runner, Status, load_feature
from vctbdd.steps import Steps

DEFAULT_FEATURES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "features")


def existing_file(arg):
    if not os.path.isfile(arg):
        raise argparse.ArgumentTypeError(f"{arg} is not a file")
    return arg


def dir_path(string):
    """Determines if the path passed is a real dir"""
    if os.path.isdir(string):
        return string
    raise NotADirectoryError(string)


def default_features():
    return sorted(
        os.path.join(DEFAULT_FEATURES_DIR, name)
        for name in os.listdir(DEFAULT_FEATURES_DIR)
        if name.endswith(".feature")
    )


def cli_args(argv=None, parser=None):
    if parser is None:
        parser = argparse.ArgumentParser(
            description=__doc__,
            formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        )
    parser.add_argument(
        "features",
        nargs="*",
        type=existing_file,
        help="Feature files to run (defaults to the bundled features)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_REQUEST_TIMEOUT_SEC,
        help="Maximum time (secs) to wait for each log response",
    )
    parser.add_argument(
        "--retry-interval",
        type=float,
        default=DEFAULT_RETRY_INTERVAL_SEC,
        help="Time (secs) between two polls of the log",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=DEFAULT_MAX_ATTEMPTS,
        help="Number of polls before an expectation on the log is reported as failed",
    )
    parser.add_argument(
        "--ca",
        type=existing_file,
        help="CA bundle used to verify the log TLS certificate",
        default=None,
    )
    parser.add_argument(
        "--fixtures-dir",
        type=dir_path,
        help="Directory holding the credentials submitted by name",
        default=DEFAULT_FIXTURES_DIR,
    )
    parser.add_argument(
        "-n",
        "--name",
        help="Only run scenarios whose name contains this string",
        default=None,
    )
    parser.add_argument(
        "-t",
        "--tags",
        help="Only run scenarios carrying one of these tags",
        action="append",
        default=None,
    )
    parser.add_argument(
        "--log-level",
        help="Minimum level of emitted log lines",
        default="INFO",
        choices=["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR"],
    )
    parser.add_argument(
        "--dry-run",
        help="Only list the selected scenarios",
        action="store_true",
    )
    args = parser.parse_args(argv)
    if not args.features:
        args.features = default_features()
    return args


def setup_logging(level="INFO"):
    LOG.remove()
    LOG.add(
        sys.stdout,
        level=level,
        format="<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    )


def run(args) -> int:
    fixtures = FixtureSet.from_directory(args.fixtures_dir)
    policy = RetryPolicy(interval=args.retry_interval, max_attempts=args.max_attempts)
    runner = Runner(
        functools.partial(
            Steps, fixtures=fixtures, policy=policy, timeout=args.timeout, ca=args.ca
        ),
        name_filter=args.name,
        tags=args.tags,
    )

    results = []
    for path in args.features:
        feature = load_feature(path)
        if args.dry_run:
            for scenario in feature.scenarios:
                if runner.selected(scenario):
                    LOG.info(f"{path}:{scenario.line}: {scenario.name}")
            continue
        results.extend(runner.run_feature(feature))

    failed = [r for r in results if r.status == Status.failure]
    passed = [r for r in results if r.status == Status.success]
    for r in failed:
        LOG.error(f'"{r.scenario}" failed after {r.duration:.1f}s: {r.error}')
    if results:
        LOG.info(
            f"{len(passed)} passed, {len(failed)} failed, "
            f"{len(results) - len(passed) - len(failed)} skipped"
        )
    return 1 if failed else 0


def main(argv=None):
    args = cli_args(argv)
    setup_logging(args.log_level)
    sys.exit(run(args))


if __name__ == "__main__":
    main()

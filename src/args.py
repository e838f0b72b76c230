"""Argument parsing functionality for tarprefetch."""

import argparse


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser. Defaults of None mean "use config/Constants"."""
    parser = argparse.ArgumentParser(
        prog="tarprefetch",
        description=(
            "Resolve npm packages and their transitive dependencies, "
            "then download one tarball per resolved version"
        ),
        add_help=True,
    )

    parser.add_argument("-l", "--load_list",
                        dest="LIST_FROM_FILE",
                        help="Load package specifiers from a file (default: packages.txt)",
                        action="append", type=str,
                        default=[])
    parser.add_argument("-p", "--package",
                        dest="SINGLE",
                        help="Name a single package specifier, e.g. left-pad@1.3.0",
                        action="append", type=str,
                        default=[])
    parser.add_argument("-d", "--directory",
                        dest="TAR_DIR",
                        help="Directory receiving the .tgz files (default: tarballs)",
                        action="store", type=str)
    parser.add_argument("--registry",
                        dest="REGISTRY",
                        help="npm registry base URL",
                        action="store", type=str)

    parser.add_argument("--concurrency",
                        dest="CONCURRENCY",
                        help="Concurrent tarball downloads",
                        action="store", type=int)
    parser.add_argument("--workers",
                        dest="WORKERS",
                        help="Concurrent metadata prefetch threads during resolution",
                        action="store", type=int)
    parser.add_argument("--retries",
                        dest="RETRIES",
                        help="Total attempts per metadata request (1 = no retry)",
                        action="store", type=int)
    parser.add_argument("--unresolved-policy",
                        dest="UNRESOLVED_POLICY",
                        help="fail: record unresolvable specifiers as failures; "
                             "keep: warn and try npm pack on the raw specifier",
                        action="store", type=str.lower,
                        choices=["fail", "keep"])
    parser.add_argument("--no-peer",
                        dest="NO_PEER",
                        help="Do not follow peerDependencies",
                        action="store_true")
    parser.add_argument("--include-optional",
                        dest="INCLUDE_OPTIONAL",
                        help="Also follow optionalDependencies",
                        action="store_true")
    parser.add_argument("--no-pack-fallback",
                        dest="NO_PACK_FALLBACK",
                        help="Do not fall back to 'npm pack' when a download fails",
                        action="store_true")
    parser.add_argument("--resolve-only",
                        dest="RESOLVE_ONLY",
                        help="Print the resolved closure without downloading",
                        action="store_true")

    parser.add_argument("-o", "--output",
                        dest="OUTPUT",
                        help="Write a JSON report to this path",
                        action="store", type=str)
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to a YAML configuration file",
                        action="store", type=str)
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str.upper,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)
    parser.add_argument("--error-on-warnings",
                        dest="ERROR_ON_WARNINGS",
                        help="Exit with a non-zero status code if any item failed.",
                        action="store_true")
    return parser


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    return build_parser().parse_args(argv)

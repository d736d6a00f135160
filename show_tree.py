#!/usr/bin/env python3
"""
Inspect X.509 certificates from a PEM/DER file or a URL.

A single certificate is printed in full. Several certificates are linked
into issuer/subject trees, and every certificate is shown with its expiry
state and whether its issuer name matches the certificate above it.
"""

import argparse
import sys

from cert_display import display_certificate_tree_text, display_verbose
from cert_lib import (
    CertError,
    fetch_certificate_chain_from_url,
    load_certificate_from_file,
    parse_certificate_chain,
)
from cert_tree import build_certificate_tree


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cert-tree",
        description="X.509 certificate inspection utility",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("-f", "--file", help="Certificate file path (PEM or DER)")
    source.add_argument("-U", "--url", help="Certificate URL (PEM download or HTTPS server)")
    parser.add_argument("-t", "--text", action="store_true", default=True,
                        help="Plain text output (the default)")
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI colors")
    parser.add_argument("--verbose", action="store_true", help="Report how many certificates were loaded")
    return parser


def load_records(args):
    if args.file:
        return parse_certificate_chain(load_certificate_from_file(args.file))
    return fetch_certificate_chain_from_url(args.url)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    use_color = not args.no_color

    try:
        certificates = load_records(args)
    except CertError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.verbose:
        print(f"Loaded {len(certificates)} certificates from {args.file or args.url}", file=sys.stderr)

    if len(certificates) == 1:
        display_verbose(certificates[0], use_color=use_color)
    else:
        display_certificate_tree_text(build_certificate_tree(certificates), use_color=use_color)
    return 0


if __name__ == "__main__":
    sys.exit(main())

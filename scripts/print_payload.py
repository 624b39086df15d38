#!/usr/bin/env python3
"""Print a signed AWS IAM login payload for the current AWS credentials."""

import argparse
import os
import sys

from aws_auth_payload import (
    AwsAuthPayloadError,
    build_iam_payload,
    get_aws_credentials,
    init_metrics,
    kubernetes_token,
    presigned_url,
)
from aws_auth_payload.client import VAULT_SERVER_ID_HEADER


def parse_header(value: str) -> tuple[str, str]:
    name, sep, header_value = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"Expected NAME=VALUE, got {value!r}")
    return name, header_value


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Print a signed STS GetCallerIdentity login payload")
    parser.add_argument(
        "--region",
        default=os.environ.get("AWS_STS_REGION"),
        help="STS region (default: the global endpoint)"
    )
    parser.add_argument("--profile", default=None, help="AWS profile to read credentials from")
    parser.add_argument("--server-id", default=None, help=f"Value for the {VAULT_SERVER_ID_HEADER} header")
    parser.add_argument(
        "--header",
        action="append",
        type=parse_header,
        default=[],
        metavar="NAME=VALUE",
        help="Extra header to sign (repeatable)"
    )
    parser.add_argument("--presigned", action="store_true", help="Also print a pre-signed URL")
    parser.add_argument("--kubernetes-cluster", default=None, help="Also print a Kubernetes token for this cluster")
    args = parser.parse_args(argv)

    # Keep stdout clean for the JSON payload
    init_metrics(enabled=False)

    headers = dict(args.header)
    if args.server_id:
        headers[VAULT_SERVER_ID_HEADER] = args.server_id

    try:
        credentials = get_aws_credentials(args.profile)
        payload = build_iam_payload(credentials, region=args.region, additional_headers=headers)
        print(payload.to_json(indent=2))

        if args.presigned:
            print()
            print(presigned_url(credentials, region=args.region, additional_headers=headers))
        if args.kubernetes_cluster:
            print()
            print(kubernetes_token(credentials, args.kubernetes_cluster, region=args.region))
    except (AwsAuthPayloadError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

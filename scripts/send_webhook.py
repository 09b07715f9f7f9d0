"""Sign and POST a raw gateway notification to the billing API.

Useful for replaying notifications and duplicate-delivery testing.
"""

import argparse
import json
from pathlib import Path

import httpx

from paysub.services.webhooks.service import sign


def send(api_url: str, path: str, raw_body: bytes, secret: str, repeat: int) -> list[int]:
    """Deliver the same signed body `repeat` times; return status codes."""

    headers = {"Content-Type": "application/json", "X-Signature": f"sha256={sign(raw_body, secret)}"}
    codes = []
    with httpx.Client(base_url=api_url, timeout=10.0) as client:
        for _ in range(repeat):
            resp = client.post(path, content=raw_body, headers=headers)
            codes.append(resp.status_code)
            print(f"status={resp.status_code} body={resp.text}")
    return codes


def main() -> None:
    """Parse CLI args and deliver one notification body."""

    parser = argparse.ArgumentParser(description="Sign and send a gateway webhook body.")
    parser.add_argument("--api-url", default="http://localhost:8000")
    parser.add_argument("--path", default="/payments/webhook", choices=["/payments/webhook", "/subscriptions/webhook"])
    parser.add_argument("--secret", required=True)
    parser.add_argument("--action", default=None, help="Build a body from --action and --resource-id")
    parser.add_argument("--resource-id", default=None)
    parser.add_argument("--file", dest="json_file", default=None, help="Path to a raw JSON body")
    parser.add_argument("--repeat", type=int, default=1)
    args = parser.parse_args()

    if args.json_file:
        raw_body = Path(args.json_file).read_bytes()
    elif args.action and args.resource_id:
        raw_body = json.dumps({"action": args.action, "data": {"id": args.resource_id}}).encode("utf-8")
    else:
        raise SystemExit("Provide --file, or both --action and --resource-id")

    send(args.api_url, args.path, raw_body, args.secret, max(1, args.repeat))


if __name__ == "__main__":
    main()

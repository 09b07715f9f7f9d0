"""Reconcile every non-terminal payment against the gateway.

Lists open payments through the API and calls `/payments/{id}/sync` for
each one. Run it after an outage in which webhooks may have been lost.
"""

import argparse
import json

import httpx

OPEN_STATUSES = ("pending", "authorized", "in_process", "in_mediation")


def main() -> None:
    """CLI entrypoint for bulk payment reconciliation."""

    parser = argparse.ArgumentParser(description="Sync open payments with the gateway.")
    parser.add_argument("--api-url", default="http://localhost:8000")
    parser.add_argument("--api-key", required=True)
    parser.add_argument("--caller-id", default="sync-script")
    parser.add_argument("--limit", type=int, default=100)
    args = parser.parse_args()

    headers = {
        "X-API-Key": args.api_key,
        "X-Caller-Id": args.caller_id,
        "X-Caller-Capabilities": "billing:admin",
    }
    report = {"synced": [], "failed": []}
    with httpx.Client(base_url=args.api_url, headers=headers, timeout=15.0) as client:
        for status in OPEN_STATUSES:
            page = 1
            while True:
                resp = client.get("/payments", params={"status": status, "page": page, "limit": args.limit})
                resp.raise_for_status()
                listing = resp.json()
                for item in listing["items"]:
                    sync = client.post(f"/payments/{item['id']}/sync")
                    if sync.status_code == 200:
                        report["synced"].append({"id": item["id"], "from": status, "to": sync.json()["status"]})
                    else:
                        report["failed"].append({"id": item["id"], "status_code": sync.status_code})
                if page >= listing["total_pages"]:
                    break
                page += 1
    print(json.dumps(report, indent=2))


if __name__ == "__main__":
    main()

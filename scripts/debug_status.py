"""Quick debug: print scheduler status and 30-day signal stats from a running API."""
import json
import sys

import httpx

base = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8080"

status = httpx.get(f"{base}/scheduler/status").json()
print(f"running={status.get('running')} cycles={status.get('cycle_count')} last={status.get('last_cycle_at')}")
for name in status.get("bindings", []):
    print(f"  binding: {name}")
print(f"deliveries: {status.get('deliveries', {})}")

stats = httpx.get(f"{base}/signals/stats").json().get("stats") or {}
print(json.dumps(stats, indent=2))

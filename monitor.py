#!/usr/bin/env python3
"""Script de monitoring pour PureTranslate."""

import json
import os
import sys
from datetime import datetime

import httpx


def check_endpoint(url: str, name: str) -> tuple[bool, str]:
    """Vérifie un endpoint."""
    try:
        response = httpx.get(url, timeout=5)
        if response.status_code == 200:
            return True, f"✓ {name} OK"
        else:
            return False, f"✗ {name} returned {response.status_code}"
    except Exception as e:
        return False, f"✗ {name} error: {str(e)}"


def fetch_json(url: str) -> dict:
    response = httpx.get(url, timeout=5)
    response.raise_for_status()
    return response.json()


def main():
    """Fonction principale."""
    print("=" * 60)
    print("   PureTranslate - Health Check")
    print("=" * 60)
    print(f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print()

    base_url = os.getenv("PURETRANSLATE_URL", "http://localhost:8000")
    all_ok = True

    endpoints = [
        (f"{base_url}/healthz", "Health Check"),
        (f"{base_url}/metrics", "Metrics"),
        (f"{base_url}/patterns", "Pattern Library"),
    ]

    for url, name in endpoints:
        ok, msg = check_endpoint(url, name)
        print(msg)
        if not ok:
            all_ok = False

    print()

    try:
        health = fetch_json(f"{base_url}/healthz")
        print("Health Details:")
        print(json.dumps(health, indent=2, ensure_ascii=False))
        if not health.get("ollama_available"):
            all_ok = False
    except Exception as e:
        print(f"Could not get health details: {e}")
        all_ok = False

    print()

    # Alerte sur le taux de replis
    try:
        alerts = fetch_json(f"{base_url}/monitor/alerts")
        if alerts.get("fallback_alert"):
            print(
                f"✗ Fallback rate {alerts['fallback_rate']:.0%} above "
                f"{alerts['threshold']:.0%} over {alerts['window_seconds']}s"
            )
            all_ok = False
        else:
            print(f"✓ Fallback rate {alerts.get('fallback_rate', 0.0):.0%}")

        queue = fetch_json(f"{base_url}/monitor/review-queue")
        print(f"Priority review queue: {queue.get('count', 0)} item(s)")
    except Exception as e:
        print(f"Could not get alerts: {e}")

    print()

    try:
        metrics = fetch_json(f"{base_url}/metrics")
        print("Metrics:")
        print(json.dumps(metrics, indent=2, ensure_ascii=False))
        last_run = metrics.get("last_regression_run")
        if last_run and last_run.get("failed"):
            print(f"✗ Last regression run: {last_run['failed']} failing case(s)")
            all_ok = False
    except Exception as e:
        print(f"Could not get metrics: {e}")

    print()
    print("=" * 60)

    if all_ok:
        print("✓ All systems operational")
        return 0
    else:
        print("✗ Some systems are degraded")
        return 1


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Mosquitto Manager - Entry Point
=================================
One-command startup for the broker management console.

Usage:
    python app.py                  # Start with default settings
    python app.py --port 9000      # Start on custom port
    python app.py --log-level debug

This script:
    1. Creates config.yaml from config.yaml.example on first run
    2. Loads environment variables from .env (bootstrap credentials)
    3. Configures logging
    4. Starts uvicorn with the console application factory

The startup reconciliation (document -> artifacts -> broker restart) runs
inside the application lifespan, before the first request is served.
"""

import argparse
import logging
import os
import shutil

import uvicorn
from dotenv import load_dotenv

from console.settings import DEFAULTS, SettingsManager


def main():
    """Parse arguments, load settings, and start the web server."""

    # -- Parse command-line arguments ------------------------------------------
    parser = argparse.ArgumentParser(
        description="Mosquitto Manager - MQTT broker management console",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port number for the web console (overrides config.yaml)",
    )
    parser.add_argument(
        "--host", type=str, default=None,
        help="Host binding address (overrides config.yaml)",
    )
    parser.add_argument(
        "--log-level", type=str, default="info",
        choices=["debug", "info", "warning", "error"],
        help="Logging verbosity",
    )
    args = parser.parse_args()

    # -- Resolve project directory ---------------------------------------------
    project_dir = os.path.dirname(os.path.abspath(__file__))

    # -- Ensure configuration file exists --------------------------------------
    config_path = os.path.join(project_dir, "config.yaml")
    config_example = os.path.join(project_dir, "config.yaml.example")
    if not os.path.exists(config_path) and os.path.exists(config_example):
        shutil.copy2(config_example, config_path)
        print("[INIT] Created config.yaml from template")

    # -- Load environment variables from .env ----------------------------------
    env_path = os.path.join(project_dir, ".env")
    if os.path.exists(env_path):
        load_dotenv(env_path)

    # -- Logging ---------------------------------------------------------------
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # -- Load settings to get web server binding -------------------------------
    config = SettingsManager(project_dir).load()
    host = args.host or config["web"].get("host", DEFAULTS["web"]["host"])
    port = args.port or config["web"].get("port", DEFAULTS["web"]["port"])

    print()
    print(f"  Mosquitto Manager : http://{host}:{port}")
    print(f"  Broker directory  : {config['broker']['mosquitto_dir']}")
    print()

    # -- Start the web server --------------------------------------------------
    uvicorn.run(
        "console.main:create_app",
        factory=True,
        host=host,
        port=int(port),
        reload=False,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
